# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Flutter name tables shared by the structural and lexical extractors."""

import re

LITERAL_KEY_CLASSES = frozenset({"Key", "ValueKey"})
GLOBAL_KEY_CLASSES = frozenset({"GlobalKey", "LabeledGlobalKey", "GlobalObjectKey"})
# Key classes whose argument is never a stable string identifier.
NON_STRING_KEY_CLASSES = frozenset({"UniqueKey", "ObjectKey"})

FINDER_KEY_METHODS = frozenset({"byKey", "byValueKey"})
FINDER_SEMANTICS_METHODS = frozenset({"bySemanticsLabel"})

_WIDGET_SUFFIXES = ("Widget", "Button", "Field", "View", "Screen", "Page", "Dialog", "Card")
_KNOWN_WIDGETS = frozenset(
    {
        "Column",
        "Row",
        "Stack",
        "Scaffold",
        "AppBar",
        "Center",
        "Padding",
        "Expanded",
        "ListView",
        "GridView",
        "Container",
        "Text",
        "Image",
        "Icon",
        "MaterialApp",
        "CupertinoApp",
        "Semantics",
        "ElevatedButton",
        "TextButton",
        "IconButton",
        "OutlinedButton",
    }
)

# Line-level widget mention count used by the lexical strategy.
WIDGET_MENTION_RE = re.compile(
    r"\b(StatefulWidget|StatelessWidget|Widget|MaterialApp|CupertinoApp|Scaffold"
    r"|AppBar|Container|Column|Row|ListView|GridView|Stack|Card|Button|TextField"
    r"|Text|Image)\b"
)


def is_widget(name: str) -> bool:
    """Return whether a constructor name looks like a Flutter widget."""
    return name in _KNOWN_WIDGETS or name.endswith(_WIDGET_SUFFIXES)


def is_custom_key_class(name: str) -> bool:
    """Return whether a constructor name is a project-defined ``*Key`` class."""
    return (
        name.endswith("Key")
        and name[:1].isupper()
        and name not in LITERAL_KEY_CLASSES
        and name not in GLOBAL_KEY_CLASSES
        and name not in NON_STRING_KEY_CLASSES
    )
