from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination shared by catalog, entry and count listings.

    Clients can tune page size with `?page_size=`; the cap is high enough for a
    counting screen to load a full store catalog in one request.
    """

    page_size_query_param = "page_size"
    max_page_size = 1000
