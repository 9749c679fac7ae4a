"""
Pagination helpers shared by list endpoints.
"""


def paginate_query(query, page: int, page_size: int):
    """
    Helper function to apply pagination to SQLAlchemy query.

    Returns:
        Tuple of (paginated_items, total_count)
    """
    total = query.count()
    offset = (page - 1) * page_size
    items = query.offset(offset).limit(page_size).all()
    return items, total
