import json
from typing import Dict, Iterable, List, Optional

import httpx


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays without waiting."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def follow_user(fid: int) -> Dict:
    return {
        "fid": fid,
        "username": f"user{fid}",
        "displayName": f"User Number {fid}",
        "pfp": {"url": f"https://img.example/{fid}.png"},
        "profile": {"bio": {"text": f"bio of {fid}"}},
    }


def follow_page(fids: Iterable[int], cursor: Optional[str] = None) -> Dict:
    page: Dict = {"result": {"users": [follow_user(fid) for fid in fids]}}
    if cursor:
        page["next"] = {"cursor": cursor}
    return page


def moderation_payload(scores_by_id: Dict[str, Dict[str, float]]) -> Dict:
    body = []
    for user_id, labels in scores_by_id.items():
        body.append({
            "user_id": user_id,
            "ai_labels": {
                "moderation": [{"label": label, "score": score} for label, score in labels.items()],
            },
        })
    return {"status_code": 200, "body": body}


def requested_ids(request: httpx.Request) -> List[str]:
    return json.loads(request.content)["users_list"]
