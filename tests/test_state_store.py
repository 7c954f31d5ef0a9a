from nexus_blog.models import Boundary, GeneratedPost, GeneratedPostStatus, WidgetPosition
from nexus_blog.state_store import (
    DEFAULT_POSITION,
    GENERATED_POST_KEY,
    JsonStateStore,
    constrain_position,
)


def test_constrain_position_clamps_set_edges_only():
    boundary = Boundary(left=0, top=10, right=500)

    assert constrain_position(WidgetPosition(x=-5, y=0), boundary) == WidgetPosition(x=0, y=10)
    assert constrain_position(WidgetPosition(x=900, y=2000), boundary) == WidgetPosition(x=500, y=2000)
    assert constrain_position(WidgetPosition(x=3, y=4)) == WidgetPosition(x=3, y=4)


def test_widget_position_round_trip_and_reset(tmp_path):
    store = JsonStateStore(tmp_path)

    assert store.get_position("chatbot") == DEFAULT_POSITION
    saved = store.save_position("chatbot", WidgetPosition(x=700, y=40), Boundary(right=600))
    assert saved == WidgetPosition(x=600, y=40)
    assert JsonStateStore(tmp_path).get_position("chatbot") == saved

    assert store.reset_position("chatbot") == DEFAULT_POSITION
    assert store.get_position("chatbot") == DEFAULT_POSITION


def test_corrupt_state_falls_back_to_default(tmp_path):
    store = JsonStateStore(tmp_path)
    store.set("widget-position:toc", {"x": "left"})
    (tmp_path / "garbage.json").write_text("{not json", encoding="utf-8")

    assert store.get_position("toc") == DEFAULT_POSITION
    assert store.get("garbage") is None


def test_generated_post_handoff_is_overwritten(tmp_path):
    store = JsonStateStore(tmp_path)
    first = GeneratedPost(id="generated-1", title="One", content="# One", status=GeneratedPostStatus.COMPLETED)
    second = GeneratedPost(id="generated-2", title="Two", content="# Two", sourceKeyword="two")

    store.save_generated_post(first)
    store.save_generated_post(second)

    current = store.current_generated_post()
    assert current.id == "generated-2"
    assert current.source_keyword == "two"
    assert store.get(GENERATED_POST_KEY)["sourceKeyword"] == "two"
    assert len(list(tmp_path.glob("*.json"))) == 1


def test_missing_handoff_is_none(tmp_path):
    assert JsonStateStore(tmp_path / "nested").current_generated_post() is None


def test_returned_default_position_is_a_copy(tmp_path):
    store = JsonStateStore(tmp_path)

    position = store.get_position("toc")
    position.x = 500
    reset = store.reset_position("toc")
    reset.y = 900

    assert DEFAULT_POSITION == WidgetPosition(x=20, y=20)
    assert store.get_position("toc") == WidgetPosition(x=20, y=20)
