from discount_issuer.middleware.request_log import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
