"""测试订单复制引擎

测试场景：
1. 父账户下单复制到启用中的子账户，子订单记录 parent_order_id
2. 校验失败不调用券商、不落地订单
3. 父订单凭证被拒时整体失败，订单簿不变
4. 子账户之间互不影响，凭证被拒的子账户被停用
5. 撤单只推送一次 order_update，重复撤单为空操作
"""
import asyncio

import pytest

from conftest import order_payload
from copytrade.core.errors import OrderError, OrderErrorKind, UpstreamError, UpstreamErrorKind
from copytrade.core.models import ChildCandidate, ChildLink, OrderStatus, Profile
from copytrade.services import ReplicationEngine, ReplicationOutcome


def link_child(account_repository, parent_id, child_id, credential, is_active=True):
    account_repository.upsert(parent_id, ChildLink(
        child_user_id=child_id,
        access_credential=credential,
        display_name=f"Child {child_id}",
        is_active=is_active,
    ))


def assert_quantity_invariant(order_repository):
    for user_id in order_repository.user_ids():
        for order in order_repository.list(user_id):
            assert order.filled_quantity + order.pending_quantity == order.quantity


class TestPlaceOrder:
    """测试下单与复制"""

    def test_parent_order_replicated_to_active_child(self, engine, gateway, order_repository,
                                                     account_repository, publisher, parent):
        """父账户下单：父子各一条记录，子订单指向父订单"""
        link_child(account_repository, 'P1', 'C1', 'child-token-0001')
        gateway.place_results['parent-token-0001'] = ['A1']
        gateway.place_results['child-token-0001'] = ['B1']

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert result.order.order_id == 'A1'
        assert result.order.status == OrderStatus.PENDING
        assert result.order.pending_quantity == 10
        assert result.fan_out.succeeded == ['C1']

        parent_orders = order_repository.list('P1')
        child_orders = order_repository.list('C1')
        assert [o.order_id for o in parent_orders] == ['A1']
        assert [o.order_id for o in child_orders] == ['B1']
        assert child_orders[0].parent_order_id == 'A1'
        assert child_orders[0].owner_user_id == 'C1'
        assert child_orders[0].tag == f"{parent_orders[0].tag}_child_C1"

        assert publisher.topics() == ['new_order', 'new_order']
        assert [p['order_id'] for p in publisher.for_topic('new_order')] == ['A1', 'B1']
        assert_quantity_invariant(order_repository)

    def test_instrument_id_payload_with_one_child(self, engine, order_repository, account_repository, parent):
        """instrument_id 形式的请求：父子共两条待成交记录"""
        link_child(account_repository, 'P1', 'C1', 'child-token-0001')
        payload = {
            'instrument_id': 'NSE_EQ|X', 'quantity': 10, 'price': 100.0,
            'order_type': 'LIMIT', 'transaction_type': 'BUY', 'product': 'D',
        }

        result = asyncio.run(engine.place_order(parent, payload))

        records = order_repository.list('P1') + order_repository.list('C1')
        assert len(records) == 2
        assert {o.status for o in records} == {OrderStatus.PENDING}
        assert order_repository.list('C1')[0].parent_order_id == result.order.order_id
        assert result.order.trading_symbol == 'X'

    def test_broker_payload_matches_request(self, engine, gateway, parent):
        """提交给券商的请求体字段完整且默认值正确"""
        asyncio.run(engine.place_order(parent, order_payload(transaction_type='sell', tag='my_tag')))

        _, credential, body = gateway.calls_for('place_order')[0]
        assert credential == 'parent-token-0001'
        assert body == {
            'quantity': 10,
            'product': 'D',
            'validity': 'DAY',
            'price': 2450.5,
            'tag': 'my_tag',
            'instrument_token': 'NSE_EQ|INE002A01018',
            'order_type': 'LIMIT',
            'transaction_type': 'SELL',
            'disclosed_quantity': 0,
            'trigger_price': 0.0,
            'is_amo': False,
            'slice': False,
        }

    def test_generated_tags_are_unique(self, engine, gateway, parent):
        """未指定 tag 时每次下单生成不同的 tag"""
        asyncio.run(engine.place_order(parent, order_payload()))
        asyncio.run(engine.place_order(parent, order_payload()))

        tags = [body['tag'] for _, _, body in gateway.calls_for('place_order')]
        assert len(set(tags)) == 2
        assert all(tag.startswith('copy_trading_') for tag in tags)

    def test_explicit_slice_is_honoured(self, engine, gateway, parent):
        asyncio.run(engine.place_order(parent, order_payload(slice=True)))
        assert gateway.calls_for('place_order')[0][2]['slice'] is True

    def test_newest_order_first(self, engine, gateway, order_repository, parent):
        """同一用户的订单按时间倒序"""
        gateway.place_results['parent-token-0001'] = ['A1']
        asyncio.run(engine.place_order(parent, order_payload()))
        gateway.place_results['parent-token-0001'] = ['A2']
        asyncio.run(engine.place_order(parent, order_payload()))

        assert [o.order_id for o in order_repository.list('P1')] == ['A2', 'A1']

    def test_slice_returns_multiple_ids(self, engine, gateway, order_repository, parent):
        """拆单返回多个订单号时以第一个为主订单号"""
        gateway.place_results['parent-token-0001'] = ['A1', 'A2', 'A3']

        result = asyncio.run(engine.place_order(parent, order_payload(slice=True)))

        assert result.order.order_id == 'A1'
        assert result.order.upstream_ids == ['A1', 'A2', 'A3']
        assert order_repository.count('P1') == 1

    def test_child_principal_does_not_fan_out(self, engine, gateway, account_repository, child_principal):
        """子账户自己下单不触发复制"""
        link_child(account_repository, 'C9', 'C1', 'child-token-0001')

        result = asyncio.run(engine.place_order(child_principal, order_payload()))

        assert result.fan_out.results == []
        assert len(gateway.calls_for('place_order')) == 1

    def test_inactive_child_is_skipped(self, engine, gateway, order_repository, account_repository, parent):
        link_child(account_repository, 'P1', 'C1', 'child-token-0001', is_active=False)

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert result.fan_out.skipped == ['C1']
        assert order_repository.list('C1') == []
        assert [c[1] for c in gateway.calls_for('place_order')] == ['parent-token-0001']


class TestValidationBoundary:
    """测试校验失败时不发起任何券商调用"""

    @pytest.mark.parametrize('payload', [
        order_payload(quantity=0),
        order_payload(quantity=-5),
        order_payload(instrument_token=None),
        order_payload(order_type=''),
        order_payload(transaction_type='HOLD'),
        order_payload(price=-1),
        order_payload(quantity='abc'),
        order_payload(price='nan'),
        order_payload(price='inf'),
        order_payload(price=float('nan')),
        order_payload(trigger_price=float('inf')),
        {k: v for k, v in order_payload().items() if k != 'product'},
        {k: v for k, v in order_payload().items() if k != 'quantity'},
    ])
    def test_invalid_request_never_reaches_broker(self, engine, gateway, order_repository, publisher,
                                                  parent, payload):
        gateway.explode = True

        with pytest.raises(OrderError) as exc_info:
            asyncio.run(engine.place_order(parent, payload))

        assert exc_info.value.kind == OrderErrorKind.VALIDATION
        assert order_repository.user_ids() == []
        assert publisher.events == []

    def test_missing_fields_are_listed(self, engine, parent):
        with pytest.raises(OrderError) as exc_info:
            asyncio.run(engine.place_order(parent, {'quantity': 1}))

        assert set(exc_info.value.details['missing']) == {
            'instrument_id', 'order_type', 'transaction_type', 'product'
        }


class TestParentFailure:
    """测试父订单提交失败"""

    def test_auth_rejected_stores_nothing(self, engine, gateway, order_repository, account_repository,
                                          publisher, parent):
        """父订单凭证被拒：Unauthenticated，不落地、不复制"""
        link_child(account_repository, 'P1', 'C1', 'child-token-0001')
        gateway.place_results['parent-token-0001'] = UpstreamError(
            UpstreamErrorKind.AUTH_REJECTED, "Invalid token used to access API", http_status=401,
        )

        with pytest.raises(OrderError) as exc_info:
            asyncio.run(engine.place_order(parent, order_payload()))

        assert exc_info.value.kind == OrderErrorKind.UNAUTHENTICATED
        assert order_repository.user_ids() == []
        assert publisher.events == []
        assert [c[1] for c in gateway.calls_for('place_order')] == ['parent-token-0001']

    @pytest.mark.parametrize('kind, expected', [
        (UpstreamErrorKind.TIMEOUT, OrderErrorKind.TIMEOUT),
        (UpstreamErrorKind.VALIDATION, OrderErrorKind.UPSTREAM_REJECTED),
        (UpstreamErrorKind.RATE_LIMITED, OrderErrorKind.UPSTREAM_REJECTED),
        (UpstreamErrorKind.UNKNOWN, OrderErrorKind.UPSTREAM_REJECTED),
    ])
    def test_upstream_error_kinds(self, engine, gateway, order_repository, parent, kind, expected):
        gateway.place_results['parent-token-0001'] = UpstreamError(kind, "broker said no")

        with pytest.raises(OrderError) as exc_info:
            asyncio.run(engine.place_order(parent, order_payload()))

        assert exc_info.value.kind == expected
        assert exc_info.value.message == "broker said no"
        assert order_repository.user_ids() == []

    def test_empty_order_ids_is_rejection(self, engine, gateway, order_repository, parent):
        gateway.place_results['parent-token-0001'] = []

        with pytest.raises(OrderError) as exc_info:
            asyncio.run(engine.place_order(parent, order_payload()))

        assert exc_info.value.kind == OrderErrorKind.UPSTREAM_REJECTED
        assert order_repository.user_ids() == []


class TestChildIsolation:
    """测试子账户复制互不影响"""

    def test_one_child_rejected_others_succeed(self, engine, gateway, order_repository,
                                               account_repository, parent):
        """C1 成功、C2 凭证被拒（停用）、C3 超时，父订单不受影响"""
        link_child(account_repository, 'P1', 'C1', 'child-token-0001')
        link_child(account_repository, 'P1', 'C2', 'child-token-0002')
        link_child(account_repository, 'P1', 'C3', 'child-token-0003')
        gateway.place_results['child-token-0002'] = UpstreamError(UpstreamErrorKind.AUTH_REJECTED, "expired")
        gateway.place_results['child-token-0003'] = UpstreamError(UpstreamErrorKind.TIMEOUT, "timed out")

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert result.fan_out.succeeded == ['C1']
        assert sorted(result.fan_out.failed) == ['C2', 'C3']
        assert result.fan_out.deactivated == ['C2']
        assert result.fan_out.get('C3').error_kind == OrderErrorKind.TIMEOUT.value

        assert order_repository.count('P1') == 1
        assert order_repository.count('C1') == 1
        assert order_repository.list('C2') == []
        assert order_repository.list('C3') == []

        assert account_repository.get_child('P1', 'C1').is_active is True
        assert account_repository.get_child('P1', 'C2').is_active is False
        assert account_repository.get_child('P1', 'C3').is_active is True

    def test_deactivated_child_skipped_next_time(self, engine, gateway, account_repository, parent):
        link_child(account_repository, 'P1', 'C2', 'child-token-0002')
        gateway.place_results['child-token-0002'] = UpstreamError(UpstreamErrorKind.AUTH_REJECTED, "expired")
        asyncio.run(engine.place_order(parent, order_payload()))

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert result.fan_out.get('C2').outcome == ReplicationOutcome.SKIPPED_INACTIVE
        assert len([c for c in gateway.calls_for('place_order') if c[1] == 'child-token-0002']) == 1

    def test_stale_rejection_keeps_relinked_child_active(self, engine, gateway, account_repository,
                                                         registry, parent, monkeypatch):
        """旧凭证复制在途时子账户被重新添加：旧凭证被拒不停用新记录"""
        link_child(account_repository, 'P1', 'C1', 'old-token')
        gateway.profiles['new-token'] = Profile(user_id='C1')
        gateway.place_results['old-token'] = UpstreamError(UpstreamErrorKind.AUTH_REJECTED, "expired")
        place_order = gateway.place_order

        def relink_while_in_flight(credential, order):
            if credential == 'old-token':
                asyncio.run(registry.upsert_child('P1', ChildCandidate(user_id='C1', access_credential='new-token')))
            return place_order(credential, order)

        monkeypatch.setattr(gateway, 'place_order', relink_while_in_flight)

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert result.fan_out.failed == ['C1']
        assert result.fan_out.deactivated == []
        link = account_repository.get_child('P1', 'C1')
        assert link.access_credential == 'new-token'
        assert link.is_active is True

    def test_unexpected_exception_is_contained(self, engine, gateway, order_repository,
                                               account_repository, parent):
        link_child(account_repository, 'P1', 'C1', 'child-token-0001')
        link_child(account_repository, 'P1', 'C2', 'child-token-0002')
        gateway.place_results['child-token-0001'] = RuntimeError("boom")

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert result.fan_out.failed == ['C1']
        assert result.fan_out.succeeded == ['C2']
        assert order_repository.count('C2') == 1

    def test_child_empty_ids_fails_only_that_child(self, engine, gateway, account_repository, parent):
        link_child(account_repository, 'P1', 'C1', 'child-token-0001')
        gateway.place_results['child-token-0001'] = []

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert result.fan_out.failed == ['C1']
        assert result.order.order_id

    def test_fan_out_concurrency_is_bounded(self, gateway, order_repository, registry, publisher,
                                            account_repository, parent):
        for i in range(6):
            link_child(account_repository, 'P1', f'C{i}', f'child-token-{i:04d}')
        gateway.place_delay = 0.05
        engine = ReplicationEngine(gateway, order_repository, registry, publisher, max_concurrency=2)

        result = asyncio.run(engine.place_order(parent, order_payload()))

        assert len(result.fan_out.succeeded) == 6
        assert gateway.max_in_flight <= 2

    def test_invalid_concurrency_rejected(self, gateway, order_repository, registry, publisher):
        with pytest.raises(ValueError):
            ReplicationEngine(gateway, order_repository, registry, publisher, max_concurrency=0)


class TestCancelOrder:
    """测试撤单"""

    def test_cancel_publishes_one_update(self, engine, gateway, order_repository, publisher, parent):
        gateway.place_results['parent-token-0001'] = ['A1']
        asyncio.run(engine.place_order(parent, order_payload()))

        order = asyncio.run(engine.cancel_order(parent, 'A1'))

        assert order.status == OrderStatus.CANCELLED
        assert order.filled_quantity + order.pending_quantity == order.quantity
        assert publisher.topics() == ['new_order', 'order_update']
        assert gateway.calls_for('cancel_order') == [('cancel_order', 'parent-token-0001', 'A1')]

    def test_second_cancel_is_noop(self, engine, gateway, publisher, parent):
        gateway.place_results['parent-token-0001'] = ['A1']
        asyncio.run(engine.place_order(parent, order_payload()))
        asyncio.run(engine.cancel_order(parent, 'A1'))

        order = asyncio.run(engine.cancel_order(parent, 'A1'))

        assert order.status == OrderStatus.CANCELLED
        assert len(publisher.for_topic('order_update')) == 1
        assert len(gateway.calls_for('cancel_order')) == 1

    def test_cancel_unknown_order(self, engine, gateway, publisher, parent):
        """本地无记录：仍调用券商撤单，不推送"""
        order = asyncio.run(engine.cancel_order(parent, 'UNKNOWN'))

        assert order is None
        assert len(gateway.calls_for('cancel_order')) == 1
        assert publisher.events == []

    def test_cancel_failure_keeps_status(self, engine, gateway, order_repository, publisher, parent):
        gateway.place_results['parent-token-0001'] = ['A1']
        asyncio.run(engine.place_order(parent, order_payload()))
        gateway.cancel_results['parent-token-0001'] = UpstreamError(
            UpstreamErrorKind.VALIDATION, "Order already completed", http_status=400,
        )

        with pytest.raises(OrderError) as exc_info:
            asyncio.run(engine.cancel_order(parent, 'A1'))

        assert exc_info.value.kind == OrderErrorKind.UPSTREAM_REJECTED
        assert order_repository.find('P1', 'A1').status == OrderStatus.PENDING
        assert publisher.for_topic('order_update') == []

    def test_cancel_only_touches_own_orders(self, engine, gateway, order_repository,
                                            account_repository, parent, child_principal):
        """子账户不能通过订单号改动父账户的记录"""
        gateway.place_results['parent-token-0001'] = ['A1']
        asyncio.run(engine.place_order(parent, order_payload()))

        result = asyncio.run(engine.cancel_order(child_principal, 'A1'))

        assert result is None
        assert order_repository.find('P1', 'A1').status == OrderStatus.PENDING
