"""账户注册服务：管理父账户名下的子账户"""
import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from copytrade.constants import (
    REASON_CREDENTIAL_REJECTED,
    REASON_SELF_LINK,
    REASON_VERIFICATION_FAILED,
)
from copytrade.core.errors import UpstreamError, UpstreamErrorKind, ValidationError
from copytrade.core.models import ChildCandidate, ChildLink
from copytrade.core.protocols import BrokerGateway
from copytrade.core.repositories import ChildAccountRepository
from copytrade.utils.helpers import mask_credential
from copytrade.utils.logger import get_logger

logger = get_logger('account_registry')


class AccountRegistry:
    """子账户注册表

    职责：
    - 添加子账户前通过券商 get_profile 校验凭证
    - 同一父账户下同一 child_user_id 只保留一条记录
    - 复制时凭证被拒的子账户由复制引擎调用 deactivate 停用
    """

    def __init__(self, repository: ChildAccountRepository, gateway: BrokerGateway):
        """初始化

        Args:
            repository: 子账户仓库
            gateway: 券商网关
        """
        self.repository = repository
        self.gateway = gateway

    def get_children(self, parent_id: str) -> List[ChildLink]:
        """获取子账户列表，无记录时返回空列表"""
        return self.repository.get_children(parent_id)

    def find_credential(self, child_id: str) -> Optional[str]:
        """按子账户 ID 查找凭证（供对账循环使用）"""
        link = self.repository.find_by_child(child_id)
        return link.access_credential if link else None

    async def upsert_child(self, parent_id: str, candidate: ChildCandidate) -> ChildLink:
        """校验并添加子账户

        已存在同一 child_user_id 时原位替换（重新激活）。

        Raises:
            ValidationError: 凭证被拒（credential_rejected）或校验失败（verification_failed）
        """
        if candidate.user_id and candidate.user_id == parent_id:
            raise ValidationError(REASON_SELF_LINK, "A parent account cannot link itself as a child")

        try:
            profile = await asyncio.to_thread(self.gateway.get_profile, candidate.access_credential)
        except UpstreamError as e:
            logger.warning(f"[AccountRegistry] 子账户校验失败: parent={parent_id} child={candidate.user_id} "
                           f"token={mask_credential(candidate.access_credential)} kind={e.kind.value}")
            if e.kind in (UpstreamErrorKind.AUTH_REJECTED, UpstreamErrorKind.VALIDATION):
                raise ValidationError(
                    REASON_CREDENTIAL_REJECTED,
                    "Invalid access token or child account not accessible",
                    {'upstream_kind': e.kind.value},
                ) from e
            raise ValidationError(
                REASON_VERIFICATION_FAILED,
                f"Could not verify child account: {e.message}",
                {'upstream_kind': e.kind.value},
            ) from e

        child_id = profile.user_id or candidate.user_id
        if not child_id:
            raise ValidationError(REASON_VERIFICATION_FAILED, "Broker profile did not include a user id")
        if child_id == parent_id:
            raise ValidationError(REASON_SELF_LINK, "A parent account cannot link itself as a child")

        now = datetime.now(timezone.utc).isoformat()
        link = ChildLink(
            child_user_id=child_id,
            access_credential=candidate.access_credential,
            display_name=profile.user_name or candidate.display_name or 'Child User',
            email=profile.email or candidate.email,
            is_active=True,
            connected_at=now,
            last_sync=now,
        )
        self.repository.upsert(parent_id, link)
        logger.info(f"[AccountRegistry] 子账户已关联: parent={parent_id} child={child_id}")
        return link

    def remove_child(self, parent_id: str, child_id: str) -> None:
        """删除子账户（幂等）"""
        if self.repository.remove(parent_id, child_id):
            logger.info(f"[AccountRegistry] 子账户已移除: parent={parent_id} child={child_id}")

    def deactivate(self, parent_id: str, child_id: str, credential: Optional[str] = None) -> bool:
        """停用子账户（幂等）

        传入 credential 时只在记录仍使用该凭证时停用，
        重新添加后的新凭证不受旧凭证失败的影响。

        Returns:
            本次调用是否停用了记录
        """
        flipped = []
        stale = []

        def _deactivate(link: ChildLink):
            if credential is not None and link.access_credential != credential:
                stale.append(link.child_user_id)
                return
            if link.is_active:
                link.is_active = False
                flipped.append(link.child_user_id)

        self.repository.update(parent_id, child_id, _deactivate)
        if flipped:
            logger.warning(f"[AccountRegistry] 子账户凭证失效，已停用: parent={parent_id} child={child_id}")
        elif stale:
            logger.info(f"[AccountRegistry] 凭证已更新，跳过停用: parent={parent_id} child={child_id} "
                        f"token={mask_credential(credential)}")
        return bool(flipped)

    def touch(self, parent_id: str, child_id: str) -> None:
        """复制成功后刷新 last_sync"""
        def _touch(link: ChildLink):
            link.last_sync = datetime.now(timezone.utc).isoformat()

        self.repository.update(parent_id, child_id, _touch)
