import pytest

from backend.app.access import PUBLIC_LANDING, VIEWS, is_allowed, landing_path, menu_for


@pytest.mark.parametrize(
    "roles,view,expected",
    [
        (["seller"], "sales_create", True),
        (["backoffice"], "sales_create", False),
        (["analyst"], "product_statistics", True),
        (["client"], "dashboard", False),
        (["client"], "my_price_list", True),
        (["comex_pending"], "comex", False),
        (["comex"], "comex", True),
        (["superadmin"], "users", True),
        ([], "dashboard", False),
        (None, "dashboard", False),
        (["superadmin"], "no_such_view", False),
    ],
)
def test_is_allowed(roles, view, expected):
    assert is_allowed(roles, view) is expected


def test_menu_hides_non_menu_views_and_filters_by_role():
    keys = [m["key"] for m in menu_for(["seller"])]
    assert "sales" in keys
    assert "sales_create" not in keys
    assert "users" not in keys
    assert menu_for([]) == []


def test_every_view_names_only_known_roles():
    from backend.app.access import ALL_ROLES

    for view in VIEWS.values():
        assert view.roles <= ALL_ROLES


def test_landing_path_per_role():
    assert landing_path([]) == PUBLIC_LANDING
    assert landing_path(["comex_pending", "client"]) == "/awaiting-approval"
    assert landing_path(["client"]) == "/my-list"
    assert landing_path(["comex"]) == "/comex"
    assert landing_path(["comex", "superadmin"]) == "/"
    assert landing_path(["backoffice"]) == "/"
