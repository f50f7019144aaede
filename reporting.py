"""Read-side order statistics for the admin dashboard."""

from datetime import datetime
from typing import Any, Dict, Optional

from pymongo.database import Database

from database import utcnow
from orders import ORDER_STATUSES, PAYMENT_STATUSES

# Revenue only counts money that was actually captured
REVENUE_MATCH = {"payment_status": "paid"}


class OrderReports:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db["order"]

    def _count_by(self, field: str, keys, match: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        pipeline = []
        if match:
            pipeline.append({"$match": match})
        pipeline.append({"$group": {"_id": f"${field}", "count": {"$sum": 1}}})
        counts = {key: 0 for key in keys}
        for row in self.collection.aggregate(pipeline):
            if row["_id"] in counts:
                counts[row["_id"]] = row.get("count") or 0
        return counts

    def revenue(self, match: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {"$and": [match, REVENUE_MATCH]} if match else REVENUE_MATCH
        rows = list(self.collection.aggregate([
            {"$match": query},
            {"$group": {
                "_id": None,
                "total_revenue": {"$sum": "$total"},
                "average_order_value": {"$avg": "$total"},
                "paid_orders": {"$sum": 1},
            }},
        ]))
        if not rows:
            return {"total_revenue": 0.0, "average_order_value": 0.0, "paid_orders": 0}
        row = rows[0]
        return {
            "total_revenue": round(row.get("total_revenue") or 0.0, 2),
            "average_order_value": round(row.get("average_order_value") or 0.0, 2),
            "paid_orders": row.get("paid_orders") or 0,
        }

    def status_statistics(self, match: Optional[Dict[str, Any]] = None) -> Dict[str, Dict[str, Any]]:
        """Per order status: how many orders and how much paid revenue."""
        counts = self._count_by("order_status", ORDER_STATUSES, match)
        stats = {status: {"count": n, "revenue": 0.0} for status, n in counts.items()}
        paid = self.collection.aggregate([
            {"$match": {"$and": [match, REVENUE_MATCH]} if match else REVENUE_MATCH},
            {"$group": {"_id": "$order_status", "revenue": {"$sum": "$total"}}},
        ])
        for row in paid:
            if row["_id"] in stats:
                stats[row["_id"]]["revenue"] = round(row.get("revenue") or 0.0, 2)
        return stats

    def summary(self) -> Dict[str, Any]:
        revenue = self.revenue()
        return {
            "summary": {
                "total_orders": self.collection.count_documents({}),
                "total_revenue": revenue["total_revenue"],
                "average_order_value": revenue["average_order_value"],
            },
            "status_breakdown": self._count_by("order_status", ORDER_STATUSES),
            "payment_breakdown": self._count_by("payment_status", PAYMENT_STATUSES),
        }

    def overview(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_month = start_of_day.replace(day=1)
        start_of_year = start_of_month.replace(month=1)
        count = self.collection.count_documents
        return {
            "orders": {
                "total": count({}),
                "today": count({"created_at": {"$gte": start_of_day}}),
                "this_month": count({"created_at": {"$gte": start_of_month}}),
                "this_year": count({"created_at": {"$gte": start_of_year}}),
            },
            "status_breakdown": self._count_by("order_status", ORDER_STATUSES),
            "revenue": self.revenue(),
        }
