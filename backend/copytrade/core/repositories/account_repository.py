"""子账户关联数据访问层"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from copytrade.core.models import ChildLink


class ChildAccountRepository(ABC):
    """子账户关联仓库接口（按父账户分区）"""

    @abstractmethod
    def get_children(self, parent_id: str) -> List[ChildLink]:
        """获取父账户下的子账户（保持添加顺序）"""

    @abstractmethod
    def get_child(self, parent_id: str, child_id: str) -> Optional[ChildLink]:
        """获取单个子账户"""

    @abstractmethod
    def upsert(self, parent_id: str, link: ChildLink) -> ChildLink:
        """新增或原位替换同一 child_user_id 的记录"""

    @abstractmethod
    def remove(self, parent_id: str, child_id: str) -> bool:
        """删除子账户，返回是否真的删除了记录"""

    @abstractmethod
    def update(self, parent_id: str, child_id: str, mutation: Callable[[ChildLink], None]) -> Optional[ChildLink]:
        """原子地修改子账户，不存在时返回 None"""

    @abstractmethod
    def find_by_child(self, child_id: str) -> Optional[ChildLink]:
        """跨父账户按 child_user_id 查找（优先返回启用中的记录）"""


class InMemoryChildAccountRepository(ChildAccountRepository):
    """内存子账户仓库，每个父账户一把锁"""

    def __init__(self):
        self._links: Dict[str, List[ChildLink]] = {}
        self._parent_locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, parent_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._parent_locks.get(parent_id)
            if lock is None:
                lock = threading.RLock()
                self._parent_locks[parent_id] = lock
            return lock

    def get_children(self, parent_id: str) -> List[ChildLink]:
        with self._lock_for(parent_id):
            return list(self._links.get(parent_id, []))

    def get_child(self, parent_id: str, child_id: str) -> Optional[ChildLink]:
        with self._lock_for(parent_id):
            for link in self._links.get(parent_id, []):
                if link.child_user_id == child_id:
                    return link
            return None

    def upsert(self, parent_id: str, link: ChildLink) -> ChildLink:
        with self._lock_for(parent_id):
            links = self._links.setdefault(parent_id, [])
            for index, existing in enumerate(links):
                if existing.child_user_id == link.child_user_id:
                    links[index] = link
                    break
            else:
                links.append(link)
            return link

    def remove(self, parent_id: str, child_id: str) -> bool:
        with self._lock_for(parent_id):
            links = self._links.get(parent_id, [])
            remaining = [link for link in links if link.child_user_id != child_id]
            self._links[parent_id] = remaining
            return len(remaining) != len(links)

    def update(self, parent_id: str, child_id: str, mutation: Callable[[ChildLink], None]) -> Optional[ChildLink]:
        with self._lock_for(parent_id):
            for link in self._links.get(parent_id, []):
                if link.child_user_id == child_id:
                    mutation(link)
                    return link
            return None

    def find_by_child(self, child_id: str) -> Optional[ChildLink]:
        with self._registry_lock:
            parent_ids = list(self._links.keys())
        found = None
        for parent_id in parent_ids:
            link = self.get_child(parent_id, child_id)
            if link is None:
                continue
            if link.is_active:
                return link
            found = found or link
        return found
