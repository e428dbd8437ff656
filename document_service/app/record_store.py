from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import InvalidTransition, RecordStoreUnavailable
from .logger import get_logger
from .schemas import DocumentRecord, DocumentStatus

logger = get_logger(__name__)

UPDATABLE_FIELDS = ("extracted_text", "status", "processing_note", "error_detail")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_to_item(record: DocumentRecord) -> Dict[str, Any]:
    return {
        "owner_id": record.owner_id,
        "document_id": record.document_id,
        "blob_path": record.blob_path,
        "extracted_text": record.extracted_text,
        "status": record.status.value,
        "processing_note": record.processing_note,
        "error_detail": record.error_detail,
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }


def item_to_record(item: Dict[str, Any]) -> DocumentRecord:
    return DocumentRecord(
        owner_id=item["owner_id"],
        document_id=item["document_id"],
        blob_path=item.get("blob_path", ""),
        extracted_text=item.get("extracted_text") or "",
        status=DocumentStatus(item["status"]),
        processing_note=item.get("processing_note"),
        error_detail=item.get("error_detail"),
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item["updated_at"]),
    )


class DynamoDBRecordStore:
    """Document records keyed by (owner_id, document_id).

    Every backend failure surfaces as RecordStoreUnavailable; the caller
    decides whether that is fatal.
    """

    def __init__(self, dynamodb_resource, table_name: str):
        self._dynamodb = dynamodb_resource
        self.table_name = table_name
        self._table = dynamodb_resource.Table(table_name)

    @classmethod
    def from_settings(cls, settings) -> "DynamoDBRecordStore":
        dynamodb = boto3.resource("dynamodb", **settings.boto3_kwargs())
        return cls(dynamodb, settings.dynamodb_table_documents)

    def ensure_table(self) -> None:
        client = self._dynamodb.meta.client
        existing = client.list_tables().get("TableNames", [])
        if self.table_name in existing:
            return
        logger.info(f"Creating DynamoDB table: {self.table_name}")
        client.create_table(
            TableName=self.table_name,
            KeySchema=[
                {"AttributeName": "owner_id", "KeyType": "HASH"},
                {"AttributeName": "document_id", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "owner_id", "AttributeType": "S"},
                {"AttributeName": "document_id", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        # Wait until table exists
        client.get_waiter("table_exists").wait(TableName=self.table_name)

    def upsert(self, record: DocumentRecord) -> None:
        try:
            self._table.put_item(Item=record_to_item(record))
        except (ClientError, BotoCoreError) as e:
            raise RecordStoreUnavailable(f"DynamoDB put failed: {e}") from e

    def update(
        self,
        owner_id: str,
        document_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[DocumentStatus] = None,
    ) -> DocumentRecord:
        """Apply a partial update and return the stored record.

        With expected_status set, the update only applies while the stored
        record still has that status; otherwise InvalidTransition is raised.
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        values = dict(fields)
        values["updated_at"] = utcnow().isoformat()

        expression_items = []
        attr_names = {}
        attr_values = {}
        for i, (name, value) in enumerate(values.items()):
            if isinstance(value, DocumentStatus):
                value = value.value
            expression_items.append(f"#f{i} = :v{i}")
            attr_names[f"#f{i}"] = name
            attr_values[f":v{i}"] = value

        condition = "attribute_exists(document_id)"
        if expected_status is not None:
            condition += " AND #expected_status = :expected_status"
            attr_names["#expected_status"] = "status"
            attr_values[":expected_status"] = expected_status.value

        try:
            resp = self._table.update_item(
                Key={"owner_id": owner_id, "document_id": document_id},
                UpdateExpression="SET " + ", ".join(expression_items),
                ConditionExpression=condition,
                ExpressionAttributeNames=attr_names,
                ExpressionAttributeValues=attr_values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise InvalidTransition(
                    f"Document {document_id} is missing or not in status "
                    f"{expected_status.value if expected_status else 'any'}"
                ) from e
            raise RecordStoreUnavailable(f"DynamoDB update failed: {e}") from e
        except BotoCoreError as e:
            raise RecordStoreUnavailable(f"DynamoDB update failed: {e}") from e
        return item_to_record(resp["Attributes"])

    def get(self, owner_id: str, document_id: str) -> Optional[DocumentRecord]:
        try:
            resp = self._table.get_item(Key={"owner_id": owner_id, "document_id": document_id})
        except (ClientError, BotoCoreError) as e:
            raise RecordStoreUnavailable(f"DynamoDB get failed: {e}") from e
        item = resp.get("Item")
        if not item:
            return None
        return item_to_record(item)

    def list(self, owner_id: str) -> List[DocumentRecord]:
        """All records for an owner, newest first."""
        items = []
        kwargs = {"KeyConditionExpression": Key("owner_id").eq(owner_id)}
        try:
            while True:
                resp = self._table.query(**kwargs)
                items.extend(resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as e:
            raise RecordStoreUnavailable(f"DynamoDB query failed: {e}") from e
        records = [item_to_record(item) for item in items]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records
