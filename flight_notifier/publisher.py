"""
Flight Notifier - 投稿層

責務:
  - 本番: 投稿APIへの送信 (TwitterPublisher)
  - 非本番: 通信を行わず、投稿結果の形だけを返す (EchoPublisher)

どちらも publish(status) で {created_at, text, id_str} を含むdictを返す。
APIがエラーを返した場合は "errors" キーにレスポンスを入れて返す。
"""
from datetime import datetime, timezone
from typing import Any, Dict

import aiohttp


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class EchoPublisher:
    """非本番用: 送信せずにそのまま返す"""

    async def publish(self, status: str) -> Dict[str, Any]:
        return {"created_at": _utc_now(), "text": status, "id_str": 0}


class TwitterPublisher:
    """
    投稿APIに {"text": status} をPOSTする。

    リトライ・レート制限の待機は行わない。
    通信エラー (aiohttp.ClientError / asyncio.TimeoutError) は呼び出し元に送出する。
    """

    def __init__(self, session: aiohttp.ClientSession, endpoint: str, token: str):
        self._session = session
        self._endpoint = endpoint
        self._token = token

    async def publish(self, status: str) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        async with self._session.post(
            self._endpoint, json={"text": status}, headers=headers
        ) as resp:
            try:
                body = await resp.json(content_type=None)
            except ValueError:
                body = {"detail": await resp.text()}

            if resp.status >= 300 or not isinstance(body, dict) or "data" not in body:
                return {"errors": body, "status": resp.status, "text": status}

        data = body["data"]
        return {
            "created_at": data.get("created_at") or _utc_now(),
            "text": data.get("text", status),
            "id_str": str(data.get("id", "")),
        }
