import json

import pytest

from kscrawler.models import VideoFilter, VideoRecord
from kscrawler.normalizer import (
    dedupe_by_id,
    extract_user_id_from_html,
    extract_user_id_from_url,
    make_video_filter,
    normalize_count,
    parse_comments,
    parse_feeds,
    parse_photo_detail,
    parse_profile_html,
    parse_user_profile,
    parse_vision_profile,
    profile_page_is_invalid,
    video_for_storage,
)

from tests.conftest import comment, feed

DAY_MS = 86_400_000
NOW_MS = 1_700_000_000_000


@pytest.mark.unit
class Describe_normalize_count:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1.5万", 15000),
            ("1.13万", 11300),
            ("0.57w", 5700),
            ("2.01万", 20100),
            ("2w", 20000),
            ("3W", 30000),
            ("12,345", 12345),
            ("87", 87),
            ("  42 ", 42),
            ("3.9", 3),
            (87, 87),
            (12.7, 12),
            ("", 0),
            (None, 0),
            ("abc", 0),
            ("万", 0),
            (True, 0),
            ([1], 0),
        ],
    )
    def test_should_parse_platform_counts(self, raw, expected):
        """解析各种计数格式"""
        assert normalize_count(raw) == expected

    @pytest.mark.parametrize("raw", ["1.5万", "12,345", 7, "junk", None])
    def test_should_be_idempotent(self, raw):
        """二次归一化结果不变"""
        once = normalize_count(raw)
        assert normalize_count(once) == once


@pytest.mark.unit
class Describe_make_video_filter:
    def _video(self, likes, age_days):
        return VideoRecord(id="v", like_count=likes, timestamp_ms=NOW_MS - age_days * DAY_MS)

    def test_should_accept_everything_with_defaults(self):
        """默认不过滤"""
        accept = make_video_filter(VideoFilter(), now_ms=NOW_MS)
        assert accept(VideoRecord(id="v"))

    def test_should_drop_videos_older_than_days_limit(self):
        """超出天数窗口的视频被过滤"""
        accept = make_video_filter(VideoFilter(days_limit=7), now_ms=NOW_MS)
        assert accept(self._video(0, 3))
        assert not accept(self._video(0, 8))

    def test_should_drop_missing_timestamp_when_window_set(self):
        """设置了天数窗口时缺失时间戳被过滤"""
        accept = make_video_filter(VideoFilter(days_limit=7), now_ms=NOW_MS)
        assert not accept(VideoRecord(id="v"))

    def test_should_compare_normalized_likes(self):
        """点赞阈值按归一化数值比较"""
        accept = make_video_filter(VideoFilter(min_likes=10000), now_ms=NOW_MS)
        assert accept(self._video("1.2万", 0))
        assert not accept(self._video("9,999", 0))


@pytest.mark.unit
class Describe_parsers:
    def test_should_parse_feeds_and_skip_broken_entries(self):
        """解析 feeds 并跳过无 id 项"""
        rows = parse_feeds([feed("v1"), {"photo": {}}, "junk"], keyword="cat")
        assert [row.id for row in rows] == ["v1"]
        assert rows[0].author_id == "u1"
        assert rows[0].source_keyword == "cat"
        assert rows[0].play_url == "https://cdn/v1.mp4"

    def test_should_prefer_real_like_count(self):
        """优先 realLikeCount"""
        item = feed("v1", likes=5)
        item["photo"]["realLikeCount"] = 500
        assert parse_feeds([item])[0].like_count == 500

    def test_should_return_empty_list_for_non_list(self):
        """非列表输入返回空"""
        assert parse_feeds(None) == []
        assert parse_comments({"a": 1}) == []

    def test_should_parse_photo_detail(self):
        """解析视频详情"""
        data = {"photoDetail": {"photo": feed("v9")["photo"], "user": {"id": "u9", "name": "n"}}}
        video = parse_photo_detail(data)
        assert video.id == "v9" and video.author_id == "u9"
        assert parse_photo_detail({}) is None

    def test_should_parse_one_level_of_sub_comments(self):
        """只解析一层子评论"""
        raw = comment("c1", subs=5, sub_cursor="s1")
        raw["subComments"][0]["subComments"] = [{"commentId": "deep"}]
        [row] = parse_comments([raw])
        assert row.reply_count == 5
        assert [sub.id for sub in row.sub_comments] == ["c1-s0", "c1-s1"]
        assert row.sub_comments[0].sub_comments == []
        assert row.sub_comments_cursor == "s1"
        assert row.like_count == "1,024"

    def test_should_parse_user_profile(self):
        """解析 userProfile 结构"""
        data = {
            "userProfile": {
                "ownerCount": {"fan": "1.1万", "follow": 3, "photo": 12, "liked": 100},
                "profile": {"gender": "F", "user": {"id": "u1", "name": "Alice", "avatar": "a.jpg", "living": True}},
            }
        }
        profile = parse_user_profile(data, "u1")
        assert profile.name == "Alice"
        assert profile.follower_count == "1.1万"
        assert profile.is_live_now
        assert parse_user_profile({"userProfile": {}}, "u1") is None

    def test_should_parse_vision_profile(self):
        """解析 visionProfile 结构"""
        data = {
            "visionProfile": {
                "userProfile": {
                    "ownerCount": {"fan": 10, "photo_public": 4},
                    "profile": {"user_id": "u2", "user_name": "Bob", "user_text": "hi"},
                }
            }
        }
        profile = parse_vision_profile(data, "u2")
        assert profile.id == "u2" and profile.description == "hi" and profile.video_count == 4


@pytest.mark.unit
class Describe_profile_html:
    def test_should_read_apollo_state(self):
        """从 Apollo 状态解析资料"""
        state = {"x": {"profile": {"user_id": "u3", "user_name": "Cara"}, "ownerCount": {"fan": 2}}}
        html = f"<script>window.__APOLLO_STATE__={json.dumps(state)};(function(){{}})()</script>"
        profile = parse_profile_html(html, "u3")
        assert profile.name == "Cara"
        assert profile.follower_count == 2

    def test_should_fall_back_to_markers(self):
        """无 Apollo 状态时按标记返回仅含 id 的资料"""
        html = '<div class="user-info"><span class="profile-user-name">x</span></div>'
        assert parse_profile_html(html, "u4").id == "u4"

    def test_should_reject_not_found_pages(self):
        """不存在页面返回 None"""
        assert profile_page_is_invalid("https://www.kuaishou.com/error", "")
        assert parse_profile_html("<p>用户不存在</p> user-info profile-user-name", "u5") is None
        assert parse_profile_html("<html></html>", "u5") is None


@pytest.mark.unit
class Describe_user_id_extraction:
    def test_should_extract_from_profile_url(self):
        """从主页 URL 提取 id"""
        assert extract_user_id_from_url("https://www.kuaishou.com/profile/3xabc?from=x") == "3xabc"
        assert extract_user_id_from_url(" 3xplain ") == "3xplain"

    def test_should_extract_from_html_in_pattern_order(self):
        """按顺序匹配 HTML 中的 id"""
        assert extract_user_id_from_html('<a href="/profile/3xh">') == "3xh"
        assert extract_user_id_from_html('{"authorId": "a9"}') == "a9"
        assert extract_user_id_from_html("nothing") == ""


@pytest.mark.unit
def test_dedupe_by_id_keeps_first_occurrence():
    """按 id 去重保留首个"""
    rows = dedupe_by_id([VideoRecord(id="a", caption="1"), VideoRecord(id="a", caption="2"), VideoRecord(id="b")])
    assert [(row.id, row.caption) for row in rows] == [("a", "1"), ("b", "")]


@pytest.mark.unit
def test_video_for_storage_drops_play_url_on_request():
    """save_video_url=False 时不保存播放地址"""
    video = VideoRecord(id="a", play_url="https://cdn/a.mp4")
    assert "play_url" in video_for_storage(video)
    assert "play_url" not in video_for_storage(video, save_video_url=False)
