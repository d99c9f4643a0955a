"""
Pagination used by the list endpoints (staff payout dashboard).

Clients may shrink or grow the page with ``?page_size=`` up to
``max_page_size``.
"""
from rest_framework.pagination import PageNumberPagination


class DefaultPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200
