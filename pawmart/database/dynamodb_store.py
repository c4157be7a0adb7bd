"""
DynamoDB storage backend.

Reads go through the boto3 resource (plain dicts with Decimal numbers);
every mutation is a single TransactWriteItems call through the client,
with ConditionExpressions carrying the stock, version, uniqueness and
pending-checkout guards. When DynamoDB cancels the transaction, each
CancellationReason is mapped back to the operation at the same index.

Tables:
    products          PK product_id
    carts             PK user_id
    users             PK user_id
    orders            PK order_id; GSIs user_id-created_at-index, tracking_number-index
    pending checkouts PK txnid;    GSI  status-expires_at-index
    reference keys    PK key
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from pawmart.core.config import settings
from pawmart.core.database import DatabaseManager, db_manager
from pawmart.core.exceptions import DatabaseError, ValidationError
from pawmart.database.base import MAX_TRANSACTION_ITEMS, OrderPage, OrderQuery, OrderStore, paginate_orders
from pawmart.database.operations import (
    AdjustStock,
    CheckProductExists,
    ClearCart,
    PutOrder,
    PutPendingCheckout,
    ReserveKey,
    ResolvePendingCheckout,
    TransactionCancelled,
    UpdateOrder,
    WriteFailure,
    check_distinct_targets,
)
from pawmart.models.catalog import Cart, Product, UserProfile
from pawmart.models.checkout import PendingCheckout, PendingCheckoutStatus
from pawmart.models.order import Order
from pawmart.models.serialization import float_to_decimal

logger = logging.getLogger(__name__)

_serializer = TypeSerializer()


def _av(value: Any) -> Dict[str, Any]:
    """Python value -> DynamoDB AttributeValue."""
    return _serializer.serialize(float_to_decimal(value))


def _item(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _av(v) for k, v in data.items()}


class DynamoDBOrderStore(OrderStore):

    def __init__(self, manager: Optional[DatabaseManager] = None):
        self._manager = manager or db_manager
        self.products_table_name = settings.DYNAMODB_PRODUCTS_TABLE
        self.carts_table_name = settings.DYNAMODB_CARTS_TABLE
        self.users_table_name = settings.DYNAMODB_USERS_TABLE
        self.orders_table_name = settings.DYNAMODB_ORDERS_TABLE
        self.pending_table_name = settings.DYNAMODB_PENDING_CHECKOUTS_TABLE
        self.keys_table_name = settings.DYNAMODB_REFERENCE_KEYS_TABLE

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _get_item(self, table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        table = self._manager.get_table(table_name)
        try:
            response = await asyncio.to_thread(table.get_item, Key=key, ConsistentRead=True)
        except ClientError as e:
            logger.error(f"get_item failed on {table_name}: {e}")
            raise DatabaseError(f"Failed to read from {table_name}", {"table": table_name})
        return response.get('Item')

    async def _query_all(self, table_name: str, **kwargs) -> List[Dict[str, Any]]:
        table = self._manager.get_table(table_name)
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = await asyncio.to_thread(table.query, **kwargs)
                items.extend(response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    return items
                kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except ClientError as e:
            logger.error(f"query failed on {table_name}: {e}")
            raise DatabaseError(f"Failed to query {table_name}", {"table": table_name})

    async def _scan_all(self, table_name: str, **kwargs) -> List[Dict[str, Any]]:
        table = self._manager.get_table(table_name)
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = await asyncio.to_thread(table.scan, **kwargs)
                items.extend(response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    return items
                kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except ClientError as e:
            logger.error(f"scan failed on {table_name}: {e}")
            raise DatabaseError(f"Failed to scan {table_name}", {"table": table_name})

    async def get_product(self, product_id: str) -> Optional[Product]:
        item = await self._get_item(self.products_table_name, {'product_id': product_id})
        return Product.from_item(item) if item else None

    async def get_cart(self, user_id: str) -> Optional[Cart]:
        item = await self._get_item(self.carts_table_name, {'user_id': user_id})
        return Cart.from_item(item) if item else None

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        item = await self._get_item(self.users_table_name, {'user_id': user_id})
        return UserProfile.from_item(item) if item else None

    async def get_order(self, order_id: str) -> Optional[Order]:
        item = await self._get_item(self.orders_table_name, {'order_id': order_id})
        return Order.from_item(item) if item else None

    async def find_order_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        items = await self._query_all(
            self.orders_table_name,
            IndexName='tracking_number-index',
            KeyConditionExpression=Key('tracking_number').eq(tracking_number),
        )
        return Order.from_item(items[0]) if items else None

    async def key_exists(self, key: str) -> bool:
        return await self._get_item(self.keys_table_name, {'key': key}) is not None

    async def list_orders(self, query: OrderQuery) -> OrderPage:
        if query.user_id:
            key_condition = Key('user_id').eq(query.user_id)
            if query.start and query.end:
                key_condition = key_condition & Key('created_at').between(
                    query.start.isoformat(), query.end.isoformat()
                )
            items = await self._query_all(
                self.orders_table_name,
                IndexName='user_id-created_at-index',
                KeyConditionExpression=key_condition,
                ScanIndexForward=False,
            )
        else:
            items = await self._scan_all(self.orders_table_name)

        # Remaining filters and the page slice are applied in memory
        return paginate_orders([Order.from_item(item) for item in items], query)

    async def get_pending_checkout(self, txnid: str) -> Optional[PendingCheckout]:
        item = await self._get_item(self.pending_table_name, {'txnid': txnid})
        return PendingCheckout.from_item(item) if item else None

    async def list_expired_pending_checkouts(self, now_iso: str) -> List[PendingCheckout]:
        items = await self._query_all(
            self.pending_table_name,
            IndexName='status-expires_at-index',
            KeyConditionExpression=(
                Key('status').eq(PendingCheckoutStatus.INITIATED.value) & Key('expires_at').lte(now_iso)
            ),
        )
        return [PendingCheckout.from_item(item) for item in items]

    # ------------------------------------------------------------------
    # Transactional write
    # ------------------------------------------------------------------

    def build_transact_items(self, operations: Sequence[Any], now: str) -> List[Dict[str, Any]]:
        return [self._transact_item(op, now) for op in operations]

    def _transact_item(self, op: Any, now: str) -> Dict[str, Any]:
        if isinstance(op, AdjustStock):
            return self._adjust_stock_item(op, now)

        if isinstance(op, CheckProductExists):
            return {
                'ConditionCheck': {
                    'TableName': self.products_table_name,
                    'Key': _item({'product_id': op.product_id}),
                    'ConditionExpression': (
                        'attribute_exists(product_id) AND '
                        '(attribute_not_exists(is_deleted) OR is_deleted = :false)'
                    ),
                    'ExpressionAttributeValues': {':false': _av(False)},
                }
            }

        if isinstance(op, PutOrder):
            return {
                'Put': {
                    'TableName': self.orders_table_name,
                    'Item': _item(op.order.to_item()),
                    'ConditionExpression': 'attribute_not_exists(order_id)',
                }
            }

        if isinstance(op, UpdateOrder):
            return {
                'Put': {
                    'TableName': self.orders_table_name,
                    'Item': _item(op.order.to_item()),
                    'ConditionExpression': '#version = :expected_version',
                    'ExpressionAttributeNames': {'#version': 'version'},
                    'ExpressionAttributeValues': {':expected_version': _av(op.expected_version)},
                }
            }

        if isinstance(op, ReserveKey):
            return {
                'Put': {
                    'TableName': self.keys_table_name,
                    'Item': _item({'key': op.key, 'owner_id': op.owner_id, 'created_at': now}),
                    'ConditionExpression': 'attribute_not_exists(#key)',
                    'ExpressionAttributeNames': {'#key': 'key'},
                }
            }

        if isinstance(op, ClearCart):
            update = {
                'TableName': self.carts_table_name,
                'Key': _item({'user_id': op.user_id}),
                'UpdateExpression': 'SET #items = :empty, updated_at = :now',
                'ExpressionAttributeNames': {'#items': 'items'},
                'ExpressionAttributeValues': {':empty': _av([]), ':now': _av(now)},
            }
            if op.expected_updated_at is not None:
                update['ConditionExpression'] = 'updated_at = :expected_updated_at'
                update['ExpressionAttributeValues'][':expected_updated_at'] = _av(op.expected_updated_at)
            return {'Update': update}

        if isinstance(op, PutPendingCheckout):
            return {
                'Put': {
                    'TableName': self.pending_table_name,
                    'Item': _item(op.pending.to_item()),
                    'ConditionExpression': 'attribute_not_exists(txnid)',
                }
            }

        if isinstance(op, ResolvePendingCheckout):
            set_clauses = ['#status = :status', 'resolved_at = :now']
            values = {
                ':status': _av(op.status.value),
                ':initiated': _av(PendingCheckoutStatus.INITIATED.value),
                ':now': _av(now),
            }
            if op.order_id:
                set_clauses.append('order_id = :order_id')
                values[':order_id'] = _av(op.order_id)
            if op.failure_reason:
                set_clauses.append('failure_reason = :failure_reason')
                values[':failure_reason'] = _av(op.failure_reason)
            return {
                'Update': {
                    'TableName': self.pending_table_name,
                    'Key': _item({'txnid': op.txnid}),
                    'UpdateExpression': 'SET ' + ', '.join(set_clauses),
                    'ConditionExpression': '#status = :initiated',
                    'ExpressionAttributeNames': {'#status': 'status'},
                    'ExpressionAttributeValues': values,
                }
            }

        raise TypeError(f"Unsupported storage operation: {type(op).__name__}")

    def _adjust_stock_item(self, op: AdjustStock, now: str) -> Dict[str, Any]:
        set_clauses = ['updated_at = :now']
        conditions = ['attribute_exists(product_id)']
        names = {'#stock': 'stock'}
        values: Dict[str, Any] = {':now': _av(now)}

        if any(delta.is_decrement for delta in op.deltas):
            conditions.append('(attribute_not_exists(is_deleted) OR is_deleted = :false)')
            values[':false'] = _av(False)

        for n, delta in enumerate(op.deltas):
            qty = f':qty{n}'
            values[qty] = _av(abs(delta.quantity_change))
            sign = '-' if delta.is_decrement else '+'

            if delta.variation_id is not None:
                path = f'#variations[{delta.variation_index}]'
                names['#variations'] = 'variations'
                names['#variation_id'] = 'variation_id'
                values[f':vid{n}'] = _av(delta.variation_id)
                conditions.append(f'{path}.#variation_id = :vid{n}')
                counter = f'{path}.#stock'
            else:
                counter = '#stock'

            set_clauses.append(f'{counter} = {counter} {sign} {qty}')
            if delta.is_decrement:
                conditions.append(f'{counter} >= {qty}')

        return {
            'Update': {
                'TableName': self.products_table_name,
                'Key': _item({'product_id': op.product_id}),
                'UpdateExpression': 'SET ' + ', '.join(set_clauses),
                'ConditionExpression': ' AND '.join(conditions),
                'ExpressionAttributeNames': names,
                'ExpressionAttributeValues': values,
            }
        }

    async def commit(self, operations: Sequence[Any]) -> None:
        if not operations:
            return
        if len(operations) > MAX_TRANSACTION_ITEMS:
            raise ValidationError(
                f"Maximum {MAX_TRANSACTION_ITEMS} items per transaction",
                {"operations": len(operations)}
            )
        check_distinct_targets(operations)

        transact_items = self.build_transact_items(operations, datetime.now(timezone.utc).isoformat())
        client = self._manager.get_dynamodb_client()

        try:
            await asyncio.to_thread(client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            error_code = e.response['Error']['Code']

            if error_code == 'TransactionCanceledException':
                failures = []
                for i, reason_obj in enumerate(e.response.get('CancellationReasons', [])):
                    code = reason_obj.get('Code', 'None')
                    if code != 'None' and i < len(operations):
                        failures.append(WriteFailure(index=i, operation=operations[i], reason=code))
                logger.warning(
                    f"Transaction cancelled: "
                    f"{[(f.index, type(f.operation).__name__, f.reason) for f in failures]}"
                )
                raise TransactionCancelled(failures)

            logger.error(f"TransactWriteItems failed: {error_code} - {e}")
            raise DatabaseError("Transactional write failed", {"error_code": error_code})

        logger.debug(f"Committed transaction with {len(operations)} operations")

    async def health_check(self) -> Dict[str, Any]:
        result = await self._manager.health_check()
        return {"storage": "dynamodb", "healthy": result.get("dynamodb", False), **result}

