from sep_rag.models import ItemKind
from sep_rag.preprocessing.segmenter import split_html_into_items


def test_items_follow_document_order_with_loose_text():
    markup = (
        "Loose text<p>Para</p><ul><li>a</li></ul>tail"
        "<div><table><tr><td>1</td></tr></table></div><span>x</span>"
    )

    items = split_html_into_items(markup)

    assert [item.kind for item in items] == [
        ItemKind.PARAGRAPH,
        ItemKind.PARAGRAPH,
        ItemKind.LIST,
        ItemKind.PARAGRAPH,
        ItemKind.TABLE,
        ItemKind.OTHER,
    ]
    assert items[0].html == "<p>Loose text</p>"
    assert items[3].html == "<p>tail</p>"
    assert items[4].html.startswith("<table>")


def test_figure_wrappers_and_blocks_are_classified():
    markup = (
        '<div class="figure" id="f"><img alt="x"></div>'
        "<blockquote>quoted</blockquote><pre>code</pre><figure><figcaption>c</figcaption></figure>"
    )

    kinds = [item.kind for item in split_html_into_items(markup)]

    assert kinds == [ItemKind.FIGURE, ItemKind.BLOCKQUOTE, ItemKind.PRE, ItemKind.FIGURE]


def test_plain_div_is_a_paragraph():
    items = split_html_into_items("<div>Just text</div>")

    assert len(items) == 1
    assert items[0].kind == ItemKind.PARAGRAPH


def test_whitespace_only_markup_has_no_items():
    assert split_html_into_items("   \n ") == []
