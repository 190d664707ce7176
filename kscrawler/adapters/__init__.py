from kscrawler.adapters.base import BaseCrawler
from kscrawler.adapters.kuaishou_adapter import KuaishouCrawler

__all__ = ["BaseCrawler", "KuaishouCrawler"]
