import asyncio

import httpx

from budgetflow.services.api_client import LedgerApiClient
from budgetflow.services.profile import ProfileService, build_identity


def test_build_identity():
    assert build_identity(None).is_guest
    user = build_identity({"id": "42", "first_name": "Alice", "last_name": "Smith"})
    assert user.id == 42
    assert user.username == "Alice Smith"
    assert user.initials == "AS"
    assert build_identity({"id": 7, "username": "bob"}).initials == "B"


def test_profile_enrichment():
    def handler(request):
        return httpx.Response(200, json={"success": True, "userData": {"photo_url": "https://p/a.png"}})

    api = LedgerApiClient(base_url="https://ledger.test", api_key="k", token="t", init_data="",
                          transport=httpx.MockTransport(handler))
    update = asyncio.run(ProfileService(api).fetch_profile(42))
    assert update.photo_url == "https://p/a.png"
    assert update.bio is None
