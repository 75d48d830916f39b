from __future__ import annotations

from cluster_inventory.util.pagination import paginate


def test_paginate_yields_all_items_and_pages_in_order() -> None:
    calls = []
    pages = {
        None: (["2025-01-01", "2025-01-02"], "token-2"),
        "token-2": (["2025-01-03"], None),
    }

    def fetch(page):
        calls.append(page)
        return pages[page]

    items = list(paginate(fetch))
    assert items == ["2025-01-01", "2025-01-02", "2025-01-03"]
    assert calls == [None, "token-2"]


def test_paginate_single_empty_page() -> None:
    assert list(paginate(lambda page: ([], ""))) == []
