"""Integration tests for creator profile and dashboard endpoints."""

import time

import pytest
from httpx import ASGITransport, AsyncClient

from src.models import Donation
from src.piggybank.auth import AUTH_WINDOW_MS
from src.piggybank.server import create_app


@pytest.fixture
async def client(settings, facilitator, test_db):
    app = create_app(settings, facilitator=facilitator, database=test_db)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


@pytest.mark.integration
class TestCreateUser:
    """Test POST /api/create-user."""

    @pytest.mark.asyncio
    async def test_create_user(self, client, recipient_account):
        response = await client.post(
            "/api/create-user",
            json={
                "address": recipient_account.address,
                "slug": "Alice",
                "displayName": "Alice",
                "bio": "Streams on weekends",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "User created successfully"
        assert data["user"]["address"] == recipient_account.address.lower()
        assert data["user"]["slug"] == "alice"
        assert data["user"]["displayName"] == "Alice"
        assert data["user"]["isActive"] is True

    @pytest.mark.asyncio
    async def test_duplicate_address(self, client, recipient, recipient_account):
        response = await client.post(
            "/api/create-user",
            json={"address": recipient_account.address, "slug": "alice-two"},
        )

        assert response.status_code == 409
        assert response.json() == {"error": "User with this address already exists"}

    @pytest.mark.asyncio
    async def test_duplicate_slug(self, client, recipient, payer_account):
        response = await client.post(
            "/api/create-user",
            json={"address": payer_account.address, "slug": "alice"},
        )

        assert response.status_code == 409
        assert response.json() == {"error": "This slug is already taken"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"slug": "alice"},
            {"address": "0x1111111111111111111111111111111111111111"},
            {"address": "0x1111111111111111111111111111111111111111", "slug": "a"},
            {"address": "nope", "slug": "alice"},
        ],
    )
    async def test_invalid_input(self, client, body):
        response = await client.post("/api/create-user", json=body)

        assert response.status_code == 400
        assert "error" in response.json()


@pytest.mark.integration
class TestCheckSlug:
    """Test GET /api/check-slug."""

    @pytest.mark.asyncio
    async def test_taken_and_free(self, client, recipient):
        taken = await client.get("/api/check-slug", params={"slug": "alice"})
        free = await client.get("/api/check-slug", params={"slug": "bob"})

        assert taken.json() == {"available": False, "slug": "alice"}
        assert free.json() == {"available": True, "slug": "bob"}

    @pytest.mark.asyncio
    async def test_own_slug_is_available(self, client, recipient, recipient_account):
        response = await client.get(
            "/api/check-slug",
            params={"slug": "alice", "currentAddress": recipient_account.address},
        )
        assert response.json()["available"] is True

    @pytest.mark.asyncio
    async def test_slug_required(self, client):
        response = await client.get("/api/check-slug")

        assert response.status_code == 400
        assert response.json() == {"error": "Slug is required"}


@pytest.mark.integration
class TestUserLookup:
    """Test profile lookups."""

    @pytest.mark.asyncio
    async def test_by_slug(self, client, recipient):
        response = await client.get("/api/user/slug/ALICE")

        assert response.status_code == 200
        assert response.json()["user"]["address"] == recipient.address

    @pytest.mark.asyncio
    async def test_by_address(self, client, recipient, recipient_account):
        response = await client.get(f"/api/user/{recipient_account.address}")

        assert response.status_code == 200
        assert response.json()["user"]["slug"] == "alice"

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        by_slug = await client.get("/api/user/slug/nobody")
        by_address = await client.get("/api/user/0x0000000000000000000000000000000000000000")

        assert by_slug.status_code == 404
        assert by_address.status_code == 404
        assert by_slug.json() == {"error": "User not found"}

    @pytest.mark.asyncio
    async def test_inactive_profile_not_found(self, client, recipient, recipient_account, test_db):
        await test_db.set_recipient_active(recipient.address, False)

        response = await client.get(f"/api/user/{recipient_account.address}")
        assert response.status_code == 404
        assert response.json() == {"error": "User not found"}

        # The address stays claimed
        again = await client.post(
            "/api/create-user",
            json={"address": recipient_account.address, "slug": "alice-again"},
        )
        assert again.status_code == 409
        assert again.json() == {"error": "User with this address already exists"}


@pytest.mark.integration
class TestDonationsEndpoint:
    """Test GET /api/donations/{address}."""

    @pytest.mark.asyncio
    async def test_empty_history(self, client, recipient):
        response = await client.get(f"/api/donations/{recipient.address}")

        assert response.status_code == 200
        assert response.json() == {
            "donations": [],
            "summary": {"count": 0, "totalRaw": "0", "tokenSymbol": "USDC"},
        }

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, client, recipient):
        response = await client.get(f"/api/donations/{recipient.address}", params={"limit": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_single_donation(self, client, ledger, recipient):
        stored = await ledger.record_donation(
            Donation(
                tx_hash="0x" + "cd" * 32,
                chain_id=84532,
                from_address="0x" + "12" * 20,
                to_address=recipient.address,
                token_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
                token_symbol="USDC",
                token_decimals=6,
                amount_raw="1500000",
                amount_formatted="1.5",
                message="nice",
                status="confirmed",
                confirmations=1,
            )
        )

        response = await client.get(f"/api/donation/{stored.id}")

        assert response.status_code == 200
        donation = response.json()["donation"]
        assert donation["id"] == stored.id
        assert donation["txHash"] == "0x" + "cd" * 32
        assert donation["amountFormatted"] == "1.5"
        assert donation["message"] == "nice"

    @pytest.mark.asyncio
    async def test_unknown_donation(self, client):
        response = await client.get("/api/donation/424242")

        assert response.status_code == 404
        assert response.json() == {"error": "Donation not found"}


@pytest.mark.integration
class TestUpdateUser:
    """Test PUT /api/user/{address}."""

    @pytest.mark.asyncio
    async def test_update_profile(self, client, recipient, recipient_account, wallet_auth_headers):
        response = await client.put(
            f"/api/user/{recipient_account.address}",
            json={"displayName": "  Alice B  ", "bio": " Plays cello "},
            headers=wallet_auth_headers(recipient_account),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "User updated successfully"
        assert data["user"]["displayName"] == "Alice B"
        assert data["user"]["bio"] == "Plays cello"
        assert data["user"]["slug"] == "alice"
        assert data["user"]["updatedAt"] >= data["user"]["createdAt"]

        fetched = await client.get("/api/user/slug/alice")
        assert fetched.json()["user"]["displayName"] == "Alice B"

    @pytest.mark.asyncio
    async def test_omitted_field_kept(self, client, recipient, recipient_account, wallet_auth_headers):
        response = await client.put(
            f"/api/user/{recipient_account.address}",
            json={"bio": "Weekends only"},
            headers=wallet_auth_headers(recipient_account),
        )

        assert response.status_code == 200
        assert response.json()["user"]["displayName"] == "Alice"
        assert response.json()["user"]["bio"] == "Weekends only"

    @pytest.mark.asyncio
    async def test_missing_auth_headers(self, client, recipient, recipient_account):
        response = await client.put(
            f"/api/user/{recipient_account.address}", json={"displayName": "Mallory"}
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Missing authentication headers"}

    @pytest.mark.asyncio
    async def test_signed_by_other_wallet(
        self, client, recipient, recipient_account, payer_account, wallet_auth_headers
    ):
        response = await client.put(
            f"/api/user/{recipient_account.address}",
            json={"displayName": "Mallory"},
            headers=wallet_auth_headers(payer_account),
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}

        unchanged = await client.get(f"/api/user/{recipient_account.address}")
        assert unchanged.json()["user"]["displayName"] == "Alice"

    @pytest.mark.asyncio
    async def test_expired_signature(self, client, recipient, recipient_account, wallet_auth_headers):
        stale = int(time.time() * 1000) - AUTH_WINDOW_MS - 60_000

        response = await client.put(
            f"/api/user/{recipient_account.address}",
            json={"displayName": "Alice"},
            headers=wallet_auth_headers(recipient_account, timestamp=stale),
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication expired"}

    @pytest.mark.asyncio
    async def test_wrong_message(self, client, recipient, recipient_account, wallet_auth_headers):
        response = await client.put(
            f"/api/user/{recipient_account.address}",
            json={"displayName": "Alice"},
            headers=wallet_auth_headers(recipient_account, message="hello"),
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid message format"}

    @pytest.mark.asyncio
    async def test_unregistered_address(self, client, payer_account, wallet_auth_headers):
        response = await client.put(
            f"/api/user/{payer_account.address}",
            json={"displayName": "Bob"},
            headers=wallet_auth_headers(payer_account),
        )

        assert response.status_code == 404
        assert response.json() == {"error": "User not found"}

    @pytest.mark.asyncio
    async def test_inactive_profile(
        self, client, recipient, recipient_account, test_db, wallet_auth_headers
    ):
        await test_db.set_recipient_active(recipient.address, False)

        response = await client.put(
            f"/api/user/{recipient_account.address}",
            json={"displayName": "Alice"},
            headers=wallet_auth_headers(recipient_account),
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body, error",
        [
            ({"displayName": "x" * 51}, "Display name must be at most 50 characters"),
            ({"bio": "x" * 501}, "Bio must be at most 500 characters"),
        ],
    )
    async def test_too_long(
        self, client, recipient, recipient_account, wallet_auth_headers, body, error
    ):
        response = await client.put(
            f"/api/user/{recipient_account.address}",
            json=body,
            headers=wallet_auth_headers(recipient_account),
        )

        assert response.status_code == 400
        assert response.json() == {"error": error}

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, client, recipient, recipient_account, wallet_auth_headers):
        response = await client.put(
            f"/api/user/{recipient_account.address}",
            content=b"{not json",
            headers={"content-type": "application/json", **wallet_auth_headers(recipient_account)},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}


@pytest.mark.integration
class TestDeactivateUser:
    """Test DELETE /api/user/{address}."""

    @pytest.mark.asyncio
    async def test_deactivate(self, client, recipient, recipient_account, wallet_auth_headers):
        response = await client.delete(
            f"/api/user/{recipient_account.address}",
            headers=wallet_auth_headers(recipient_account),
        )

        assert response.status_code == 200
        assert response.json() == {"message": "User deactivated successfully"}

        by_address = await client.get(f"/api/user/{recipient_account.address}")
        by_slug = await client.get("/api/user/slug/alice")
        assert by_address.status_code == 404
        assert by_slug.status_code == 404

        tip = await client.post(
            "/api/send-tip",
            json={"recipientSlug": "alice", "amount": "1", "senderAddress": "0x1"},
        )
        assert tip.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_owner(
        self, client, recipient, recipient_account, payer_account, wallet_auth_headers
    ):
        response = await client.delete(
            f"/api/user/{recipient_account.address}",
            headers=wallet_auth_headers(payer_account),
        )

        assert response.status_code == 401
        still_there = await client.get(f"/api/user/{recipient_account.address}")
        assert still_there.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_auth_headers(self, client, recipient, recipient_account):
        response = await client.delete(f"/api/user/{recipient_account.address}")

        assert response.status_code == 401
        assert response.json() == {"error": "Missing authentication headers"}

    @pytest.mark.asyncio
    async def test_second_delete_not_found(
        self, client, recipient, recipient_account, wallet_auth_headers
    ):
        first = await client.delete(
            f"/api/user/{recipient_account.address}",
            headers=wallet_auth_headers(recipient_account),
        )
        second = await client.delete(
            f"/api/user/{recipient_account.address}",
            headers=wallet_auth_headers(recipient_account),
        )

        assert first.status_code == 200
        assert second.status_code == 404
        assert second.json() == {"error": "User not found"}
