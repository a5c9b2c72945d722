"""
Admin analytics over the payments collection.
"""

from typing import List

from database import MENU, PAYMENTS, USERS, Store
from schemas import AdminStats, OrderStatRow

REVENUE_PIPELINE = [
    {"$group": {"_id": None, "total": {"$sum": "$price"}}},
]

ORDER_STATS_PIPELINE = [
    # one row per ordered dish, so repeated ids are each counted
    {"$unwind": "$menu_item_ids"},
    {
        "$lookup": {
            "from": MENU,
            "localField": "menu_item_ids",
            "foreignField": "_id",
            "as": "menu_items_data",
        }
    },
    # payments whose references no longer resolve unwind to nothing
    {"$unwind": "$menu_items_data"},
    {
        "$group": {
            "_id": "$menu_items_data.category",
            "count": {"$sum": 1},
            "total": {"$sum": "$menu_items_data.price"},
        }
    },
    {"$project": {"_id": 0, "category": "$_id", "count": 1, "total": 1}},
]


def total_revenue(store: Store) -> float:
    revenue = 0.0
    for row in store.aggregate(PAYMENTS, REVENUE_PIPELINE):
        revenue = row.get("total") or 0.0
    return round(revenue, 2)


def admin_totals(store: Store) -> AdminStats:
    return AdminStats(
        revenue=total_revenue(store),
        users=store.estimated_count(USERS),
        products=store.estimated_count(MENU),
        orders=store.estimated_count(PAYMENTS),
    )


def order_statistics(store: Store) -> List[OrderStatRow]:
    rows = store.aggregate(PAYMENTS, ORDER_STATS_PIPELINE)
    return [
        OrderStatRow(category=row["category"], count=row["count"], total=round(row["total"], 2))
        for row in rows
        if row.get("category") is not None
    ]
