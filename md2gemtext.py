#!/usr/bin/env python3

import re
import logging
from io import StringIO

import bs4
import docutils.frontend
import docutils.nodes
import docutils.utils
import docutils.writers
from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode
from mdit_py_plugins.deflist import deflist_plugin
from mdit_py_plugins.footnote import footnote_plugin


logger = logging.getLogger(__name__)


LINE_BREAK = "\n"
SPACE = " "
LINK_PREFIX = "=> "
QUOTE_PREFIX = "> "
QUOTE_LINE_BREAK = "\n> "
ITEM_PREFIX = "* "
ITEM_INDENT = "\t"
PREFORMATTED_TOGGLE = "```"
HORIZONTAL_RULE = "---"
SUBSCRIPT_DELIMITERS = ("_{", "}")
SUPERSCRIPT_DELIMITERS = ("^(", ")")
DATE_FORMAT = "%Y-%m-%d %H:%M"

#: Plain-text conventions for inline spans Gemtext cannot style.
INLINE_DELIMITERS = {
    "literal": "`",
    "emphasis": "*",
    "strong": "**",
    "strikethrough": "~~",
}

#: HTML elements removed together with their content.
DENIED_HTML_TAGS = [
    "script",
    "style",
    "form",
    "iframe",
    "canvas",
    "dialog",
    "progress",
    "fieldset",
]

DEFAULT_MAX_NESTING_DEPTH = 100

_LINE_BREAKS_REGEXP = re.compile(r"[\n\r]+")
_BLANK_TEXT_REGEXP = re.compile(r"\A\s*\Z")
_DENIED_TAG_PAIRS_REGEXP = re.compile(
    r"<\s*(%s)\b[^>]*>.*?<\s*/\s*\1\s*>" % "|".join(DENIED_HTML_TAGS),
    re.DOTALL | re.IGNORECASE,
)
_HTML_TAG_REGEXP = re.compile(r"<\s*(/?)\s*([a-zA-Z][a-zA-Z0-9-]*)")


class MalformedDocument(ValueError):
    """Raised when the document tree has a shape that cannot be rendered to
    Gemtext.

    :param str message: The error description.
    :param node: The offending doctree node (optional).
    """

    def __init__(self, message, node=None):
        ValueError.__init__(self, message)
        #: The node the error is about
        self.node = node

    def __str__(self):
        message = ValueError.__str__(self)
        if self.node is None:
            return message
        return "%s (in <%s> node)" % (message, self.node.tagname)


# ==== DOCUMENT NODES ====
#
# Markdown constructs docutils has no node class for.


class heading(docutils.nodes.Titular, docutils.nodes.TextElement):
    """A Markdown ATX or setext heading. The ``level`` attribute holds its
    depth (``1`` for ``#``)."""


class strikethrough(docutils.nodes.Inline, docutils.nodes.TextElement):
    pass


class hardbreak(docutils.nodes.Inline, docutils.nodes.Element):
    pass


#: Nodes hoisted out of the text into link blocks
_LINK_NODES = (
    docutils.nodes.reference,
    docutils.nodes.image,
    docutils.nodes.footnote_reference,
)

_LIST_NODES = (
    docutils.nodes.bullet_list,
    docutils.nodes.enumerated_list,
    docutils.nodes.definition_list,
)


# ==== TEXT HELPERS ====


def convert_to_unix_end_of_line(text):
    """Replace Windows and old macOS end of line by Unix end of lines.

    Replaces:

    * CR LF (``\r\n``): Windows style end of lines
    * CR (``\r``): Legacy macOS end of lines (macOS 9 and earlier)

    By:

    * LF (``\n``): Unix style end of lines

    :param str text: The text to process.
    :rtype: str
    :return: The text converted with unix end of lines.

    >>> convert_to_unix_end_of_line("Windows\\r\\nmacOS 9\\rand Unix\\n\\nEOL")
    'Windows\\nmacOS 9\\nand Unix\\n\\nEOL'
    """
    return text.replace("\r\n", "\n").replace("\r", "\n")


def remove_newlines(text, replacement=SPACE):
    """Replace each run of new line characters by a single replacement
    string (a space by default, allowing Gemini clients to soft-wrap).

    :param str text: The text to cleanup.
    :param str replacement: The string inserted in place of line breaks.
    :rtype: str
    :return: The cleaned text.

    >>> remove_newlines("Windows\\r\\nmacOS 9\\rand Unix\\n\\nEOL")
    'Windows macOS 9 and Unix EOL'
    >>> remove_newlines("quoted\\ntext", QUOTE_LINE_BREAK)
    'quoted\\n> text'
    """
    return _LINE_BREAKS_REGEXP.sub(lambda match: replacement, text)


def is_blank(text):
    """Checks whether the text contains nothing but whitespace.

    >>> is_blank(" \\n\\t")
    True
    >>> is_blank(" a ")
    False
    """
    return _BLANK_TEXT_REGEXP.match(text) is not None


def strip_trailing_newlines(text):
    """Collapse any run of trailing blank lines so the text ends with at
    most a single line break.

    :param str text: The rendered Gemtext.
    :rtype: str

    >>> strip_trailing_newlines("Foo\\n\\n---\\n\\n\\n")
    'Foo\\n\\n---\\n'
    >>> strip_trailing_newlines("Foo")
    'Foo'
    """
    while text.endswith(LINE_BREAK * 2):
        text = text[:-1]
    return text


def sanitize_html(html, line_break=LINE_BREAK):
    """Convert a fragment of raw HTML to plain text.

    Elements listed in ``DENIED_HTML_TAGS`` are removed with their content,
    ``<br>`` tags become line breaks, the other tags are stripped (their text
    is kept) and entities are decoded.

    :param str html: The raw HTML.
    :param str line_break: The string that replaces ``<br>`` tags.
    :rtype: str

    >>> sanitize_html("<p>Fish &amp; <b>chips</b></p>")
    'Fish & chips'
    >>> sanitize_html("<script>alert(1);</script>Hello<br>world")
    'Hello\\nworld'
    """
    html = _DENIED_TAG_PAIRS_REGEXP.sub("", html)
    if not html:
        return ""
    html = remove_newlines(html)
    soup = bs4.BeautifulSoup(html, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with(line_break)
    return soup.get_text()


def _align_cell(text, width, align=None):
    if align == "right":
        return text.rjust(width)
    if align == "center":
        return text.center(width)
    return text.ljust(width)


def format_table(rows, header_rows=0, aligns=()):
    """Draw an ASCII table.

    :param list<list<str>> rows: The cells, row by row (header rows first).
    :param int header_rows: How many of the rows are header rows.
    :param list<str> aligns: Column alignments (``"left"``, ``"right"``,
                             ``"center"`` or ``None``).
    :rtype: str

    >>> print(format_table([["Name", "Value"], ["a", "1"]], 1, [None, "right"]))
    +------+-------+
    | Name | Value |
    +------+-------+
    | a    |     1 |
    +------+-------+
    """
    columns = max([len(row) for row in rows] or [0])
    if not columns:
        return ""
    rows = [list(row) + [""] * (columns - len(row)) for row in rows]
    widths = [max(len(row[column]) for row in rows) for column in range(columns)]
    separator = "+%s+" % "+".join("-" * (width + 2) for width in widths)

    lines = [separator]
    for index, row in enumerate(rows, 1):
        cells = []
        for column, cell in enumerate(row):
            align = aligns[column] if column < len(aligns) else None
            cells.append(_align_cell(cell, widths[column], align))
        lines.append("| %s |" % " | ".join(cells))
        if index == header_rows and index < len(rows):
            lines.append(separator)
    lines.append(separator)
    return "\n".join(lines)


# ==== INLINE COMPOSER ====


def _is_block(node):
    return isinstance(
        node, (docutils.nodes.Body, docutils.nodes.list_item)
    ) and not isinstance(node, docutils.nodes.Inline)


def _is_inline_raw(node):
    return isinstance(node.parent, docutils.nodes.TextElement)


def compose_text(node, quoted=False, markup=True):
    """Compose the text of a node and its descendants on a single logical
    line.

    :param node: Any doctree node.
    :param bool quoted: Compose for a blockquote: line breaks are followed
                        by the quote prefix.
    :param bool markup: Keep the plain-text conventions for inline markup
                        (``*emphasis*``, ``_{sub}``...).
    :rtype: str
    """
    newline = QUOTE_LINE_BREAK if quoted else SPACE
    hard_break = QUOTE_LINE_BREAK if quoted else LINE_BREAK

    if isinstance(node, docutils.nodes.Text):
        return remove_newlines(str(node), newline)

    if isinstance(node, docutils.nodes.footnote_reference):
        return "[^%i]" % node["noteid"]

    if isinstance(node, hardbreak):
        return hard_break

    if isinstance(node, docutils.nodes.raw):
        if "html" not in node.get("format", "").split():
            return ""
        text = sanitize_html(node.astext(), hard_break)
        return text if _is_inline_raw(node) else text.strip()

    if isinstance(node, (docutils.nodes.subscript, docutils.nodes.superscript)):
        text = remove_newlines(node.astext())
        if not markup:
            return text
        if isinstance(node, docutils.nodes.subscript):
            opening, closing = SUBSCRIPT_DELIMITERS
        else:
            opening, closing = SUPERSCRIPT_DELIMITERS
        return opening + text + closing

    if isinstance(node, docutils.nodes.literal_block):
        text = convert_to_unix_end_of_line(node.astext()).rstrip(LINE_BREAK)
        return remove_newlines(text, newline)

    if isinstance(node, docutils.nodes.image) and not node.children:
        return remove_newlines(node.get("alt", ""), newline)

    delimiter = INLINE_DELIMITERS.get(node.tagname, "") if markup else ""
    separator = ""
    parts = []
    for child in node.children:
        # Nested lists are rendered by the list renderer, not as item text
        if isinstance(child, _LIST_NODES):
            continue
        if _is_block(child):
            separator = newline
        text = compose_text(child, quoted=quoted, markup=markup)
        if text:
            parts.append(text)
    return delimiter + separator.join(parts) + delimiter


def extract_text(node):
    """Extract the plain text of a node, without any markup convention and
    on a single line.

    :param node: Any doctree node.
    :rtype: str
    """
    return remove_newlines(compose_text(node, markup=False))


# ==== LINK HOISTER ====


def resolve_footnote(document, footnote_reference):
    """Find the footnote definition a footnote reference points to.

    :param document: The document the reference belongs to.
    :param footnote_reference: A ``footnote_reference`` node.
    :raise MalformedDocument: if the definition does not exist.
    """
    footnote = document.ids.get(footnote_reference.get("refid"))
    if not isinstance(footnote, docutils.nodes.footnote):
        raise MalformedDocument(
            "Footnote [^%s] has no definition" % footnote_reference.get("noteid"),
            footnote_reference,
        )
    return footnote


def extract_links(node, document, _followed=None):
    """Collect links, images and footnote references of a subtree in
    document order. The links of a footnote definition follow each of its
    references, except references made from inside that same definition.

    :param node: The root of the subtree.
    :param document: The document (used to resolve footnotes).
    :rtype: list
    """
    # Definitions being followed, to stop on cyclic references
    followed = set() if _followed is None else _followed
    links = []
    for link in node.findall(lambda n: isinstance(n, _LINK_NODES)):
        links.append(link)
        if isinstance(link, docutils.nodes.footnote_reference):
            footnote = resolve_footnote(document, link)
            if id(footnote) in followed:
                continue
            followed.add(id(footnote))
            links += extract_links(footnote, document, followed)
            followed.discard(id(footnote))
    return links


class LinkNode:
    """A Gemtext link line."""

    def __init__(self, node, uri=None, text=None):
        #: The original doctree node
        self.node = node
        self.uri = uri
        self.rawtext = text if text else uri

    def to_gemtext(self):
        if self.uri is None:
            raise MalformedDocument("Link URI not resolved!", self.node)
        if self.rawtext == self.uri:
            return LINK_PREFIX + self.uri
        else:
            return "%s%s %s" % (LINK_PREFIX, self.uri, self.rawtext)


class FootnoteNode:
    """A footnote definition, emitted at the end of a link block."""

    def __init__(self, node, note_id, text=""):
        self.node = node
        self.note_id = note_id
        self.rawtext = text

    def to_gemtext(self):
        return "[^%i]: %s" % (self.note_id, self.rawtext)


def is_links_only_paragraph(node):
    """Checks whether a paragraph contains nothing but links, images and
    whitespace."""
    for child in node.children:
        if isinstance(child, _LINK_NODES):
            continue
        if isinstance(child, docutils.nodes.Text) and is_blank(str(child)):
            continue
        return False
    return True


def is_links_only_list(node):
    """Checks whether every item of a list is made of links-only paragraphs
    (a "link menu")."""
    for item in node.children:
        if not isinstance(item, docutils.nodes.list_item):
            return False
        for child in item.children:
            if not isinstance(child, docutils.nodes.paragraph):
                return False
            if not is_links_only_paragraph(child):
                return False
    return True


def check_nesting_depth(document, max_depth=DEFAULT_MAX_NESTING_DEPTH):
    """Ensure the tree is not nested deeper than ``max_depth`` levels.

    :raise MalformedDocument: if the tree is too deep.
    """
    stack = [(document, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > max_depth:
            raise MalformedDocument(
                "Document is nested deeper than %i levels" % max_depth, node
            )
        if isinstance(node, docutils.nodes.Element):
            stack.extend((child, depth + 1) for child in node.children)


# ==== MARKDOWN FRONT END ====


def create_markdown_parser():
    """Create the markdown-it parser: CommonMark plus tables,
    strikethrough, footnotes and definition lists.

    :rtype: markdown_it.MarkdownIt
    """
    return (
        MarkdownIt("commonmark")
        .enable(["table", "strikethrough"])
        .use(footnote_plugin)
        .use(deflist_plugin)
    )


def _inline_html_tag(md_node):
    """Return the ``(name, closing)`` pair of an inline HTML tag token, or
    ``None`` for other tokens (and for comments or declarations)."""
    if md_node.type != "html_inline":
        return None
    match = _HTML_TAG_REGEXP.match(md_node.content)
    if match is None:
        return None
    return match.group(2).lower(), bool(match.group(1))


def _drop_denied_html_spans(md_nodes):
    """Remove inline spans opened and closed by a tag of
    ``DENIED_HTML_TAGS``, tags included. markdown-it emits the opening tag,
    the content and the closing tag as separate sibling tokens. Spans that
    are never closed are kept (their tags are stripped later).

    :param list md_nodes: Sibling markdown-it syntax tree nodes.
    :rtype: list
    """
    result = []
    span = None
    denied_tag = None
    for md_node in md_nodes:
        tag = _inline_html_tag(md_node)
        if span is not None:
            span.append(md_node)
            if tag == (denied_tag, True):
                span = None
            continue
        if tag is not None and not tag[1] and tag[0] in DENIED_HTML_TAGS:
            span = [md_node]
            denied_tag = tag[0]
            continue
        result.append(md_node)
    if span is not None:
        result.extend(span)
    return result


class DoctreeBuilder:
    """Build a doctree from a markdown-it syntax tree."""

    def __init__(self, document):
        self.document = document

    def build(self, tree):
        self.document += self._build_children(tree)

    def _build_children(self, md_node):
        result = []
        for child in _drop_denied_html_spans(md_node.children):
            built = self._build(child)
            if built is None:
                continue
            if isinstance(built, list):
                result.extend(built)
            else:
                result.append(built)
        return result

    def _build(self, md_node):
        method = getattr(self, "_build_%s" % md_node.type, None)
        if method is None:
            logger.debug("Ignoring unsupported Markdown token: %s", md_node.type)
            return None
        return method(md_node)

    # blocks

    def _build_paragraph(self, md_node):
        return docutils.nodes.paragraph("", "", *self._build_children(md_node))

    def _build_inline(self, md_node):
        return self._build_children(md_node)

    def _build_heading(self, md_node):
        return heading(
            "", "", *self._build_children(md_node), level=int(md_node.tag[1:])
        )

    def _build_blockquote(self, md_node):
        return docutils.nodes.block_quote("", *self._build_children(md_node))

    def _build_bullet_list(self, md_node):
        return docutils.nodes.bullet_list("", *self._build_children(md_node))

    def _build_ordered_list(self, md_node):
        return docutils.nodes.enumerated_list("", *self._build_children(md_node))

    def _build_list_item(self, md_node):
        return docutils.nodes.list_item(
            "", *self._build_children(md_node), term=False
        )

    def _build_fence(self, md_node):
        return docutils.nodes.literal_block(
            md_node.content,
            md_node.content,
            fenced=True,
            info=md_node.info.strip(),
        )

    def _build_code_block(self, md_node):
        return docutils.nodes.literal_block(
            md_node.content, md_node.content, fenced=False, info=""
        )

    def _build_hr(self, md_node):
        return docutils.nodes.transition()

    def _build_html_block(self, md_node):
        return docutils.nodes.raw(md_node.content, md_node.content, format="html")

    # tables

    def _build_table(self, md_node):
        return docutils.nodes.table("", *self._build_children(md_node))

    def _build_thead(self, md_node):
        return docutils.nodes.thead("", *self._build_children(md_node))

    def _build_tbody(self, md_node):
        return docutils.nodes.tbody("", *self._build_children(md_node))

    def _build_tr(self, md_node):
        return docutils.nodes.row("", *self._build_children(md_node))

    def _build_td(self, md_node):
        entry = docutils.nodes.entry("", *self._build_children(md_node))
        style = md_node.attrs.get("style", "")
        if style.startswith("text-align:"):
            entry["align"] = style.partition(":")[2].strip()
        return entry

    _build_th = _build_td

    # definition lists

    def _build_dl(self, md_node):
        return docutils.nodes.definition_list("", *self._build_children(md_node))

    def _build_dt(self, md_node):
        return docutils.nodes.list_item(
            "",
            docutils.nodes.paragraph("", "", *self._build_children(md_node)),
            term=True,
        )

    def _build_dd(self, md_node):
        return docutils.nodes.list_item(
            "", *self._build_children(md_node), term=False
        )

    # footnotes

    def _build_footnote_block(self, md_node):
        return self._build_children(md_node)

    def _build_footnote(self, md_node):
        note_id = md_node.meta["id"] + 1
        footnote = docutils.nodes.footnote(
            "",
            *self._build_children(md_node),
            ids=["footnote-%i" % note_id],
            noteid=note_id,
        )
        self.document.set_id(footnote)
        return footnote

    def _build_footnote_ref(self, md_node):
        note_id = md_node.meta["id"] + 1
        return docutils.nodes.footnote_reference(
            "", refid="footnote-%i" % note_id, noteid=note_id
        )

    def _build_footnote_anchor(self, md_node):
        return None

    # inlines

    def _build_text(self, md_node):
        return docutils.nodes.Text(md_node.content)

    _build_text_special = _build_text

    def _build_softbreak(self, md_node):
        return docutils.nodes.Text(LINE_BREAK)

    def _build_hardbreak(self, md_node):
        return hardbreak()

    def _build_code_inline(self, md_node):
        return docutils.nodes.literal(md_node.content, md_node.content)

    def _build_em(self, md_node):
        return docutils.nodes.emphasis("", "", *self._build_children(md_node))

    def _build_strong(self, md_node):
        return docutils.nodes.strong("", "", *self._build_children(md_node))

    def _build_s(self, md_node):
        return strikethrough("", "", *self._build_children(md_node))

    def _build_link(self, md_node):
        attributes = {"refuri": md_node.attrs.get("href", "")}
        if md_node.attrs.get("title"):
            attributes["title"] = md_node.attrs["title"]
        return docutils.nodes.reference(
            "", "", *self._build_children(md_node), **attributes
        )

    def _build_image(self, md_node):
        return docutils.nodes.image(
            "",
            *self._build_children(md_node),
            uri=md_node.attrs.get("src", ""),
            alt=md_node.content,
        )

    def _build_html_inline(self, md_node):
        return docutils.nodes.raw(md_node.content, md_node.content, format="html")


def new_document(source_path="document", settings=None):
    """Create an empty document with the Gemtext writer settings.

    :param str source_path: The path of the source document.
    :param settings: docutils settings (optional, defaults to the
                     ``GemtextWriter`` defaults).
    :rtype: docutils.nodes.document
    """
    if settings is None:
        settings = docutils.frontend.get_default_settings(GemtextWriter)
    return docutils.utils.new_document(source_path, settings=settings)


def parse_markdown(md_text, source_path="document", settings=None):
    """Parses a Markdown document.

    :param str md_text: The Markdown to parse.
    :param str source_path: The path of the source Markdown file (optional).
    :param settings: docutils settings (optional).
    :rtype: docutils.nodes.document
    """
    document = new_document(source_path, settings=settings)
    tokens = create_markdown_parser().parse(md_text)
    DoctreeBuilder(document).build(SyntaxTreeNode(tokens))
    return document


# ==== GEMTEXT WRITER ====


class Metadata:
    """Document metadata used to build a header before the content.

    :param str title: The document title.
    :param datetime.datetime date: The publication date (optional).
    """

    def __init__(self, title="", date=None):
        self.title = title
        self.date = date


class GemtextTranslator(docutils.nodes.GenericNodeVisitor):
    """Translate a Markdown doctree to Gemtext."""

    #: Nodes that should be completely ignored with their content.
    #: NOTE: footnote definitions are emitted by link blocks.
    _SKIPPED_NODES = [
        "footnote",
    ]

    def __init__(self, document, metadata=None):
        docutils.nodes.GenericNodeVisitor.__init__(self, document)

        #: Rendered Gemtext chunks
        self.body = []
        #: Optional metadata used to synthesize the header
        self.metadata = metadata
        #: Heading level clamp (None: no clamp)
        self.max_heading_level = getattr(
            document.settings, "gemtext_max_heading_level", None
        )

    def astext(self):
        return strip_trailing_newlines("".join(self.body))

    def dispatch_visit(self, node):
        if node.tagname in self._SKIPPED_NODES:
            raise docutils.nodes.SkipNode
        docutils.nodes.GenericNodeVisitor.dispatch_visit(self, node)

    def _hoist_links(self, node):
        """Append the link block of the given subtree: footnotes first, then
        images, then links."""
        links = extract_links(node, self.document)
        for category in (
            docutils.nodes.footnote_reference,
            docutils.nodes.image,
            docutils.nodes.reference,
        ):
            lines = []
            for link in links:
                if not isinstance(link, category):
                    continue
                link_node = self._link_node(link)
                if isinstance(link_node, LinkNode) and link_node.uri == "":
                    logger.debug("Skipping link with an empty destination")
                    continue
                lines.append(link_node.to_gemtext())
            if lines:
                self.body.append(LINE_BREAK.join(lines) + LINE_BREAK * 2)

    def _link_node(self, link):
        if isinstance(link, docutils.nodes.footnote_reference):
            footnote = resolve_footnote(self.document, link)
            return FootnoteNode(link, link["noteid"], extract_label(footnote))
        if isinstance(link, docutils.nodes.image):
            return LinkNode(link, uri=link.get("uri"), text=extract_label(link))
        return LinkNode(link, uri=link.get("refuri"), text=extract_label(link))

    # ==== DOCTREE NODES ====

    # block_quote

    def visit_block_quote(self, node):
        for child in node.children:
            text = compose_text(child, quoted=True)
            if is_blank(text):
                continue
            # Gemini clients have no quote terminator: always keep a blank
            # line after a quote so adjacent quotes are not merged
            self.body.append(QUOTE_PREFIX + text + LINE_BREAK * 2)
        raise docutils.nodes.SkipChildren

    def depart_block_quote(self, node):
        self._hoist_links(node)

    # bullet_list, enumerated_list, definition_list

    def visit_bullet_list(self, node):
        raise docutils.nodes.SkipChildren

    def depart_bullet_list(self, node):
        if not is_links_only_list(node):
            self._render_list(node)
            self.body.append(LINE_BREAK)
        self._hoist_links(node)

    def visit_enumerated_list(self, node):
        self.visit_bullet_list(node)

    def depart_enumerated_list(self, node):
        self.depart_bullet_list(node)

    def visit_definition_list(self, node):
        self.visit_bullet_list(node)

    def depart_definition_list(self, node):
        self.depart_bullet_list(node)

    def _render_list(self, node, level=0):
        ordered = isinstance(node, docutils.nodes.enumerated_list)
        for number, item in enumerate(node.children, 1):
            if not isinstance(item, docutils.nodes.list_item):
                raise MalformedDocument("Lists can only contain list items", item)
            if not item.children:
                continue
            is_term = item.get("term", False)
            # Extra line break to split up definitions
            if is_term and number > 1:
                self.body.append(LINE_BREAK)
            # Hard breaks would start an unbulleted line
            text = remove_newlines(compose_text(item))
            if text or not isinstance(item.children[0], _LIST_NODES):
                self.body.append(ITEM_INDENT * level)
                if ordered:
                    self.body.append("%i. " % number)
                elif not is_term:
                    self.body.append(ITEM_PREFIX)
                self.body.append(text + LINE_BREAK)
            for child in item.children:
                if isinstance(child, _LIST_NODES):
                    self._render_list(child, level + 1)

    # document

    def visit_document(self, node):
        if self.metadata is None:
            return
        self.body.append("# %s%s" % (self.metadata.title, LINE_BREAK * 2))
        if self.metadata.date is not None:
            self.body.append(self.metadata.date.strftime(DATE_FORMAT) + LINE_BREAK * 2)

    # heading

    def visit_heading(self, node):
        level = node.get("level", 0)
        if level < 1:
            raise MalformedDocument("Invalid heading level: %r" % level, node)
        if self.max_heading_level:
            level = min(level, self.max_heading_level)
        self.body.append("#" * level + SPACE + extract_text(node))
        raise docutils.nodes.SkipChildren

    def depart_heading(self, node):
        self.body.append(LINE_BREAK * 2)

    # list_item

    def visit_list_item(self, node):
        raise MalformedDocument("List item found outside of a list", node)

    # literal_block

    def visit_literal_block(self, node):
        self.body.append(PREFORMATTED_TOGGLE)
        if node.get("fenced", True):
            self.body.append(node.get("info", ""))
        self.body.append(LINE_BREAK)
        text = convert_to_unix_end_of_line(node.astext())
        if text and not text.endswith(LINE_BREAK):
            text += LINE_BREAK
        self.body.append(text)
        self.body.append(PREFORMATTED_TOGGLE + LINE_BREAK * 2)
        raise docutils.nodes.SkipNode

    # paragraph

    def visit_paragraph(self, node):
        if not is_links_only_paragraph(node):
            text = compose_text(node)
            if not is_blank(text):
                self.body.append(text + LINE_BREAK * 2)
        raise docutils.nodes.SkipChildren

    def depart_paragraph(self, node):
        self._hoist_links(node)

    # raw

    def visit_raw(self, node):
        formats = node.get("format", "").split()
        if "gemtext" in formats or "gmi" in formats:
            text = node.astext()
        elif "html" in formats:
            text = sanitize_html(node.astext()).strip()
        else:
            logger.debug("Dropping raw content of format %r", node.get("format"))
            text = ""
        if not is_blank(text):
            self.body.append(text.rstrip(LINE_BREAK) + LINE_BREAK * 2)
        raise docutils.nodes.SkipNode

    # table

    def visit_table(self, node):
        header_rows = []
        body_rows = []
        aligns = []
        for row in node.findall(docutils.nodes.row):
            cells = []
            for column, entry in enumerate(row.children):
                cells.append(extract_text(entry))
                if column == len(aligns):
                    aligns.append(entry.get("align"))
            if isinstance(row.parent, docutils.nodes.thead):
                header_rows.append(cells)
            else:
                body_rows.append(cells)

        self.body.append(PREFORMATTED_TOGGLE + LINE_BREAK)
        table = format_table(header_rows + body_rows, len(header_rows), aligns)
        if table:
            self.body.append(table + LINE_BREAK)
        raise docutils.nodes.SkipChildren

    def depart_table(self, node):
        self.body.append(PREFORMATTED_TOGGLE + LINE_BREAK * 2)
        self._hoist_links(node)

    # transition

    def visit_transition(self, node):
        self.body.append(HORIZONTAL_RULE + LINE_BREAK * 2)
        raise docutils.nodes.SkipNode

    # ==== DEFAULT ====

    def default_visit(self, node):
        """Override for generic, uniform traversals."""
        pass

    def default_departure(self, node):
        """Override for generic, uniform traversals."""
        pass

    def unknown_visit(self, node):
        logger.debug("No Gemtext rendering for <%s> nodes", node.tagname)

    def unknown_departure(self, node):
        pass


def extract_label(node):
    """Compose the label of a link line (always a single line)."""
    return remove_newlines(compose_text(node)).strip()


class GemtextWriter(docutils.writers.Writer):
    """Write Gemtext from a Markdown doctree."""

    supported = ("gemtext", "gmi")

    settings_spec = (
        "Gemtext Writer Options",
        None,
        (
            (
                "Clamp heading levels to the given number of '#' characters. "
                "Default: no clamping.",
                ["--max-heading-level"],
                {
                    "dest": "gemtext_max_heading_level",
                    "type": "int",
                    "metavar": "<level>",
                    "default": None,
                },
            ),
            (
                "Refuse to render documents nested deeper than the given "
                "number of levels. Default: %i." % DEFAULT_MAX_NESTING_DEPTH,
                ["--max-nesting-depth"],
                {
                    "dest": "gemtext_max_nesting_depth",
                    "type": "int",
                    "metavar": "<depth>",
                    "default": DEFAULT_MAX_NESTING_DEPTH,
                },
            ),
        ),
    )

    config_section = "gemtext writer"
    config_section_dependencies = ("writers",)

    def __init__(self, metadata=None):
        docutils.writers.Writer.__init__(self)
        self.metadata = metadata
        self.visitor = None

    def translate(self):
        max_depth = getattr(
            self.document.settings,
            "gemtext_max_nesting_depth",
            DEFAULT_MAX_NESTING_DEPTH,
        )
        check_nesting_depth(self.document, max_depth)
        self.visitor = GemtextTranslator(self.document, metadata=self.metadata)
        self.document.walkabout(self.visitor)
        self.output = self.visitor.astext()
        logger.debug(
            "Rendered %s to %i characters of Gemtext",
            self.document.get("source"),
            len(self.output),
        )


def render(document, metadata=None):
    """Render a Markdown doctree to Gemtext.

    :param docutils.nodes.document document: The document to render (see
                                             ``parse_markdown`` and
                                             ``new_document``).
    :param Metadata metadata: When given, a title and date header is
                              emitted before the content.

    :rtype: str
    :return: The Gemtext.
    :raise MalformedDocument: if the tree cannot be rendered.
    """
    output_io = StringIO()
    writer = GemtextWriter(metadata=metadata)
    writer.write(document, output_io)
    output_io.seek(0)
    return output_io.read()


def convert(md_text, source_path="document", metadata=None, settings_overrides=None):
    """Convert the input Markdown to Gemtext.

    :param str md_text: The input Markdown (without front matter).
    :param str source_path: The path of the source Markdown file (optional).
    :param Metadata metadata: Header metadata (optional).
    :param dict settings_overrides: Writer settings to override, e.g.
                                    ``{"gemtext_max_heading_level": 3}``.

    :rtype: str
    :return: The converted Gemtext.
    """
    settings = docutils.frontend.get_default_settings(GemtextWriter)
    for key, value in (settings_overrides or {}).items():
        setattr(settings, key, value)
    document = parse_markdown(md_text, source_path, settings=settings)
    return render(document, metadata=metadata)
