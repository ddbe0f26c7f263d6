"""원격 후보 적용기.

후보 로그는 재전달될 수 있고, remote description보다 먼저 도착할 수도 있습니다.
CandidateInbox는 링크 하나에 대해 다음을 보장합니다.

    - 같은 후보는 한 번만 적용 (중복 전달은 no-op)
    - remote description 설정 전 도착한 후보는 보관했다가 flush()에서 적용
    - 적용 실패한 후보는 로그만 남기고 건너뜀 (세션은 계속 진행)
"""

import logging
from typing import List, Set

from pydantic import ValidationError

from ..shared.dto import IceCandidate

logger = logging.getLogger(__name__)


class CandidateInbox:
    """PeerLink 하나에 대한 원격 후보 수신함.

    Attributes:
        link: 후보를 적용할 PeerLink
        label (str): 로그용 식별자
        applied (int): 실제로 적용을 시도한 후보 수
    """

    def __init__(self, link, label: str = ""):
        self.link = link
        self.label = label
        self.applied = 0
        self._seen: Set[tuple] = set()
        self._pending: List[IceCandidate] = []

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def receive(self, fields: dict) -> None:
        """후보 로그 항목 하나를 받습니다."""
        try:
            candidate = IceCandidate.model_validate(fields)
        except ValidationError as e:
            logger.warning(f"[Negotiation] {self.label[:8]} 잘못된 후보 무시: {e.errors()[0].get('msg')}")
            return

        if candidate.key in self._seen:
            return
        self._seen.add(candidate.key)

        if not self.link.has_remote_description:
            self._pending.append(candidate)
            return
        await self._apply(candidate)

    async def flush(self) -> None:
        """remote description 설정 후 보관 중인 후보를 적용합니다."""
        pending, self._pending = self._pending, []
        if pending:
            logger.debug(f"[Negotiation] {self.label[:8]} 보관 후보 {len(pending)}개 적용")
        for candidate in pending:
            await self._apply(candidate)

    async def _apply(self, candidate: IceCandidate) -> None:
        self.applied += 1
        try:
            await self.link.add_remote_candidate(candidate.model_dump())
        except Exception as e:
            logger.warning(f"[Negotiation] {self.label[:8]} 후보 적용 실패, 건너뜀: {type(e).__name__}: {e}")
