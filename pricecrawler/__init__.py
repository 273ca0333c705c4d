"""PriceCrawler - resumable supermarket catalog crawler with price history."""

__version__ = "0.1.0"
