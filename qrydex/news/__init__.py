from qrydex.news.collector import NewsCollector, classify

__all__ = ["NewsCollector", "classify"]
