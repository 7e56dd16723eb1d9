from journalagent.agent.formatting import render_html
from journalagent.core.models import Citation


def _citation(number: int, url: str) -> Citation:
    return Citation(id=f"citation-{number}", title="example.com", url=url, tool_name="search_web")


def test_blocks_and_inline_styles():
    text = "## Weekly review\nYou did **well** and *stayed patient*.\n- EURUSD win\n- BTC loss\n\nKeep going."
    assert render_html(text, []) == (
        "<h2>Weekly review</h2>"
        "<p>You did <strong>well</strong> and <em>stayed patient</em>.</p>"
        "<ul><li>EURUSD win</li><li>BTC loss</li></ul>"
        "<p>Keep going.</p>"
    )


def test_markup_in_the_answer_is_escaped():
    rendered = render_html('<script>alert("x")</script> & <trade-ref id="t-1"/>', [])
    assert "<script>" not in rendered
    assert "&lt;script&gt;" in rendered
    assert "&amp;" in rendered
    assert "&lt;trade-ref id=&quot;t-1&quot;/&gt;" in rendered


def test_line_breaks_inside_a_paragraph():
    assert render_html("first\nsecond", []) == "<p>first<br>second</p>"


def test_citation_links_go_into_the_last_paragraph():
    citations = [_citation(1, "https://example.com/a"), _citation(2, "https://example.com/b?x=1&y=2")]
    rendered = render_html("NFP beat expectations.", citations)
    assert rendered.startswith("<p>NFP beat expectations.<sup>")
    assert rendered.endswith("[2]</a></sup></p>")
    assert 'href="https://example.com/b?x=1&amp;y=2"' in rendered


def test_citations_after_a_list_get_their_own_paragraph():
    rendered = render_html("- one", [_citation(1, "https://example.com")])
    assert rendered.startswith("<ul><li>one</li></ul><p><sup>")


def test_empty_text_renders_nothing():
    assert render_html("", [_citation(1, "https://example.com")]) == ""
    assert render_html("  \n ", []) == ""
