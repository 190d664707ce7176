import pytest

from kscrawler.credentials import CredentialStore, cookie_map, parse_cookie_string


@pytest.mark.unit
class Describe_parse_cookie_string:
    def test_should_split_pairs_and_skip_malformed_items(self):
        """分号分隔，忽略无值项"""
        assert parse_cookie_string("a=1; b = 2 ;broken; c=") == {"a": "1", "b": "2"}

    def test_should_keep_equals_inside_value(self):
        """值中的等号保留"""
        assert parse_cookie_string("token=abc==") == {"token": "abc=="}


@pytest.mark.unit
class Describe_CredentialStore:
    def test_should_render_header_string(self):
        """生成 Cookie 头"""
        store = CredentialStore({"a": "1", "b": "2"})
        assert store.as_header_string() == "a=1; b=2"

    def test_should_detect_login_from_any_indicator(self):
        """任一会话 cookie 即视为已登录"""
        assert CredentialStore({"userId": "42"}).is_logged_in()
        assert not CredentialStore({"did": "x"}).is_logged_in()
        assert not CredentialStore({"passToken": ""}).is_logged_in()

    def test_should_replace_whole_map_from_browser_cookies(self):
        """浏览器 cookie 整体替换"""
        store = CredentialStore({"old": "1"})
        store.set_from_browser_cookies([{"name": "passToken", "value": "t"}, {"name": "", "value": "x"}])
        assert store.as_dict() == {"passToken": "t"}
        assert store.names() == ["passToken"]
        assert len(store) == 1

    def test_should_not_leak_mutations_through_as_dict(self):
        """as_dict 返回副本"""
        store = CredentialStore({"a": "1"})
        store.as_dict()["a"] = "changed"
        assert store.has("a") and store.as_dict()["a"] == "1"


@pytest.mark.unit
def test_cookie_map_strips_names_and_values():
    """cookie_map 去空白"""
    assert cookie_map([{"name": " a ", "value": " 1 "}]) == {"a": "1"}
