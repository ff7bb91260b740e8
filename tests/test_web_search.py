import httpx

from agent_studio.tools.web_search import SEARCH_URL, parse_results, web_search


PAGE = """
<div class="result">
  <a rel="nofollow" class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fdocs.python.org%2F3%2F&amp;rut=abc">Python <b>3</b> Docs</a>
</div>
<div class="result result--ad">
  <a class="result__a" href="https://duckduckgo.com/y.js?ad_provider=x">Sponsored</a>
</div>
<div class="result">
  <a href="https://example.com/a?b=1&amp;c=2" class="result__a">Tom &amp; Jerry</a>
</div>
"""


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_parse_results_unwraps_and_unescapes():
    assert parse_results(PAGE) == [
        ("Python 3 Docs", "https://docs.python.org/3/"),
        ("Tom & Jerry", "https://example.com/a?b=1&c=2"),
    ]


def test_parse_results_limit():
    page = "".join(f'<a class="result__a" href="https://e.com/{i}">r{i}</a>' for i in range(10))
    assert len(parse_results(page)) == 5


def test_web_search_formats_results():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url.copy_with(query=None))
        seen["q"] = request.url.params["q"]
        return httpx.Response(200, text=PAGE)

    out = web_search("python docs", client=_client(handler))

    assert seen == {"url": SEARCH_URL, "q": "python docs"}
    assert out.splitlines()[0] == 'Search results for "python docs":'
    assert "1. Python 3 Docs\n   https://docs.python.org/3/" in out
    assert "2. Tom & Jerry" in out


def test_web_search_no_results():
    out = web_search("zzz", client=_client(lambda request: httpx.Response(200, text="<html></html>")))
    assert out == "No search results found. Try rephrasing your query."


def test_web_search_errors_are_text():
    out = web_search("q", client=_client(lambda request: httpx.Response(503)))
    assert out.startswith("Search error: Search failed: 503")

    def boom(request):
        raise httpx.ConnectError("offline", request=request)

    assert web_search("q", client=_client(boom)).startswith("Search error: offline")
