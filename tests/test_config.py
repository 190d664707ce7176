import json

import pytest
from pydantic import ValidationError

from kscrawler.config import DEFAULT_CONFIG, CrawlerConfigError, load_crawler_config, write_default_config
from kscrawler.models import CrawlerConfig


@pytest.mark.unit
class Describe_load_crawler_config:
    def test_should_use_defaults_when_file_missing(self, tmp_path):
        """配置文件不存在时使用默认值"""
        config = load_crawler_config(tmp_path / "missing.json")
        assert config == CrawlerConfig()
        assert config.max_pages == 3

    def test_should_round_trip_default_file(self, tmp_path):
        """写出的默认配置可以重新加载"""
        path = write_default_config(tmp_path / "conf" / "config.json")
        config = load_crawler_config(path)
        assert config.search_keywords == DEFAULT_CONFIG["search_keywords"]
        assert config.video_filter.save_video_url is True

    def test_should_apply_overrides_over_file(self, tmp_path):
        """覆盖项优先于文件内容"""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"max_pages": 5, "search_keywords": ["a"]}), encoding="utf-8")
        config = load_crawler_config(path, overrides={"max_pages": 1})
        assert config.max_pages == 1
        assert config.search_keywords == ["a"]

    def test_should_reject_non_object_root(self, tmp_path):
        """根节点不是对象时报错"""
        path = tmp_path / "config.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ValueError):
            load_crawler_config(path)

    def test_should_reject_invalid_values(self, tmp_path):
        """非法取值校验失败"""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"crawler_type": "everything"}), encoding="utf-8")
        with pytest.raises(ValidationError):
            load_crawler_config(path)


@pytest.mark.unit
class Describe_CrawlerConfig:
    def test_should_return_proxy_only_when_enabled(self):
        """仅在启用且配置了 IP 时使用代理"""
        info = {"ip": "1.2.3.4", "port": 8080, "username": "u", "password": "p"}
        assert CrawlerConfig(ip_proxy_info=info).proxy() is None
        proxy = CrawlerConfig(use_proxy=True, ip_proxy_info=info).proxy()
        assert proxy.to_proxy_url() == "http://u:p@1.2.3.4:8080"
        assert proxy.playwright_proxy() == {"server": "http://1.2.3.4:8080", "username": "u", "password": "p"}

    def test_should_treat_config_error_as_value_error(self):
        """配置错误是 ValueError"""
        assert issubclass(CrawlerConfigError, ValueError)
