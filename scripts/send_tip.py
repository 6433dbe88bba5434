"""Send a tip through the full x402 exchange against a running service.

    python scripts/send_tip.py SLUG AMOUNT [MESSAGE]

Requires PAYER_PRIVATE_KEY (a funded Base Sepolia USDC wallet).
"""

import asyncio
import sys
from pathlib import Path

from eth_account import Account

sys.path.insert(0, str(Path(__file__).parent.parent))

from x402.http.clients import x402HttpxClient

from src.config import config
from src.piggybank.codec import PAYMENT_RESPONSE_HEADER, decode_payment_response
from src.piggybank.payer import create_payer_client


async def send_tip(slug: str, amount: str, message: str = "") -> int:
    """POST the tip; the x402 client answers the 402 challenge and resubmits."""
    if not config.payer_private_key:
        print("PAYER_PRIVATE_KEY is not set")
        return 1

    payer = Account.from_key(config.payer_private_key).address
    body = {
        "recipientSlug": slug,
        "amount": amount,
        "message": message,
        "senderAddress": payer,
    }
    print(f"Tipping {amount} {config.token_symbol} to '{slug}' from {payer}\n")

    client = create_payer_client(config.payer_private_key)
    async with x402HttpxClient(client, base_url=config.service_url, timeout=60.0) as http:
        response = await http.post("/api/send-tip", json=body)
        await response.aread()

    print(f"Status: {response.status_code}")
    print(f"Response: {response.text}")
    if response.status_code != 200:
        return 1

    receipt = decode_payment_response(response.headers[PAYMENT_RESPONSE_HEADER])
    print(f"Settled: tx {receipt.transaction} on {receipt.network}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(2)
    message = sys.argv[3] if len(sys.argv) > 3 else ""
    sys.exit(asyncio.run(send_tip(sys.argv[1], sys.argv[2], message)))
