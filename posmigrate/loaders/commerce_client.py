"""Client for the target commerce platform's REST and GraphQL APIs."""

import itertools
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import BulkOperationError, CommerceAPIError
from ..models.migration import CommerceConfig
from ..models.record import Operation, OperationKind, ResourceKind

logger = logging.getLogger(__name__)

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"

RESOURCE_ENDPOINTS = {
    ResourceKind.PRODUCT: "products",
    ResourceKind.CUSTOMER: "customers",
    ResourceKind.ORDER: "orders",
    ResourceKind.INVENTORY: "inventory_levels",
}

# Inventory levels are keyed by item and location; there is nothing to list or delete
LISTABLE_KINDS = (ResourceKind.PRODUCT, ResourceKind.CUSTOMER, ResourceKind.ORDER)

PRODUCT_FIELDS = ("title", "vendor", "product_type", "tags")
VARIANT_FIELDS = ("sku", "price", "compare_at_price", "barcode", "inventory_quantity")

# One mutation per JSONL line of a bulk import
BULK_MUTATIONS = {
    ResourceKind.PRODUCT: (
        "mutation call($input: ProductInput!) { productCreate(input: $input) "
        "{ product { id } userErrors { field message } } }"
    ),
    ResourceKind.CUSTOMER: (
        "mutation call($input: CustomerInput!) { customerCreate(input: $input) "
        "{ customer { id } userErrors { field message } } }"
    ),
}

WEBHOOK_TOPICS = [
    "products/create",
    "products/update",
    "customers/create",
    "orders/create",
    "app/uninstalled",
]

_STAGED_UPLOAD_MUTATION = """
mutation {
  stagedUploadsCreate(input: [{
    resource: BULK_MUTATION_VARIABLES,
    filename: "bulk_op_vars.jsonl",
    mimeType: "text/jsonl",
    httpMethod: POST
  }]) {
    stagedTargets { url resourceUrl parameters { name value } }
    userErrors { field message }
  }
}
"""

_BULK_RUN_MUTATION = """
mutation bulkOperationRunMutation($mutation: String!, $stagedUploadPath: String!) {
  bulkOperationRunMutation(mutation: $mutation, stagedUploadPath: $stagedUploadPath) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

_VARIANT_BY_SKU_QUERY = """
query variantBySku($query: String!) {
  productVariants(first: 1, query: $query) {
    edges { node { id sku inventoryItem { id } } }
  }
}
"""

_BULK_STATUS_QUERY = """
query bulkOperationStatus($id: ID!) {
  node(id: $id) {
    ... on BulkOperation { id status errorCode objectCount createdAt completedAt }
  }
}
"""


@dataclass
class OperationResult:
    """Outcome of a successful write."""
    target_id: Optional[str] = None
    response_data: Dict[str, Any] = field(default_factory=dict)


def build_payload(resource_kind: ResourceKind, record: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a flat transformed record into the REST body for its resource."""
    if resource_kind == ResourceKind.PRODUCT:
        product = {k: record[k] for k in PRODUCT_FIELDS if k in record}
        if "description" in record:
            product["body_html"] = record["description"]
        variant = {k: record[k] for k in VARIANT_FIELDS if k in record}
        if variant:
            product["variants"] = [variant]
        return {"product": product}
    if resource_kind == ResourceKind.INVENTORY:
        available = record.get("available", record.get("inventory_quantity", 0))
        return {
            "location_id": record.get("location_id"),
            "inventory_item_id": record.get("inventory_item_id"),
            "available": int(available or 0),
        }
    return {resource_kind.value: dict(record)}


def flatten_resource(resource_kind: ResourceKind, resource: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten an API resource back into the transformed-record shape."""
    if resource_kind != ResourceKind.PRODUCT:
        flat = dict(resource)
        if flat.get("id") is not None:
            flat["id"] = str(flat["id"])
        return flat

    flat = {k: resource[k] for k in PRODUCT_FIELDS if resource.get(k) is not None}
    if resource.get("body_html") is not None:
        flat["description"] = resource["body_html"]
    if resource.get("id") is not None:
        flat["id"] = str(resource["id"])
    variants = resource.get("variants") or []
    if variants:
        flat.update({k: variants[0][k] for k in VARIANT_FIELDS if variants[0].get(k) is not None})
    return flat


def to_graphql_input(resource_kind: ResourceKind, record: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a transformed record into a GraphQL mutation input."""
    if resource_kind == ResourceKind.PRODUCT:
        data: Dict[str, Any] = {"title": record.get("title")}
        if "description" in record:
            data["descriptionHtml"] = record["description"]
        if "vendor" in record:
            data["vendor"] = record["vendor"]
        if "product_type" in record:
            data["productType"] = record["product_type"]
        if record.get("tags"):
            data["tags"] = [t.strip() for t in str(record["tags"]).split(",") if t.strip()]
        variant = {}
        if "sku" in record:
            variant["sku"] = record["sku"]
        if "price" in record:
            variant["price"] = record["price"]
        if variant:
            data["variants"] = [variant]
        return data

    if resource_kind == ResourceKind.CUSTOMER:
        keys = {"first_name": "firstName", "last_name": "lastName", "email": "email", "phone": "phone"}
        data = {gql: record[key] for key, gql in keys.items() if key in record}
        if record.get("tags"):
            data["tags"] = [t.strip() for t in str(record["tags"]).split(",") if t.strip()]
        return data

    raise BulkOperationError(f"Bulk import is not supported for {resource_kind.value}")


class CommerceClient:
    """
    Blocking client for the commerce platform.

    Handles:
    - Per-record REST create/update/delete
    - Staged-upload bulk imports and bulk job status
    - Reading resources back for backups and verification
    - Webhook registration
    - Rate-limit header capture

    In dry-run mode no request leaves the process; writes land in an
    in-memory store that listing reads back.
    """

    def __init__(
        self,
        config: CommerceConfig,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            config: Commerce connection settings
            session: Custom requests session
        """
        self.config = config
        self.dry_run = config.dry_run
        self._session = session or self._create_session()
        self._lock = threading.Lock()
        self._last_call_limit: Optional[str] = None
        self._dry_run_store: Dict[ResourceKind, Dict[str, Dict[str, Any]]] = {}
        self._dry_run_ids = itertools.count(1)

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication."""
        session = requests.Session()

        # Connection-level retries only; HTTP status retries belong to the retry queue
        retries = Retry(total=3, connect=3, read=2, status=0, backoff_factor=0.5)
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        if self.config.access_token:
            session.headers["X-Shopify-Access-Token"] = self.config.access_token
        session.headers["Content-Type"] = "application/json"

        return session

    @property
    def base_url(self) -> str:
        domain = self.config.shop_domain
        if not domain.endswith(".myshopify.com"):
            domain = f"{domain}.myshopify.com"
        return f"https://{domain}/admin/api/{self.config.api_version}"

    @property
    def last_call_limit(self) -> Optional[str]:
        """Most recent "used/capacity" rate-limit header seen."""
        with self._lock:
            return self._last_call_limit

    def supports_bulk(self, resource_kind: ResourceKind) -> bool:
        return resource_kind in BULK_MUTATIONS

    def supports_listing(self, resource_kind: ResourceKind) -> bool:
        return resource_kind in LISTABLE_KINDS

    def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None, url: Optional[str] = None) -> requests.Response:
        url = url or f"{self.base_url}/{path}.json"

        try:
            response = self._session.request(
                method, url, json=data, params=params, timeout=self.config.timeout
            )
        except requests.exceptions.Timeout as e:
            raise CommerceAPIError(f"Request timeout: {e}") from e
        except requests.exceptions.RequestException as e:
            raise CommerceAPIError(f"Request failed: {e}") from e

        call_limit = response.headers.get(CALL_LIMIT_HEADER)
        if call_limit:
            with self._lock:
                self._last_call_limit = call_limit

        if not response.ok:
            raise CommerceAPIError(
                f"API Error: {self._error_message(response)}",
                status_code=response.status_code,
            )

        return response

    def _error_message(self, response: requests.Response) -> str:
        if response.status_code == 429:
            return f"rate limit exceeded ({response.reason})"
        try:
            error_data = response.json()
        except ValueError:
            return response.reason or str(response.status_code)
        errors = error_data.get("errors") or error_data.get("error")
        if isinstance(errors, (dict, list)):
            return json.dumps(errors)
        return str(errors or response.reason)

    def execute_operation(self, operation: Operation) -> OperationResult:
        """
        Perform one write.

        Raises:
            CommerceAPIError: On any non-2xx response or transport failure
        """
        if self.dry_run:
            return self._dry_run_execute(operation)

        endpoint = RESOURCE_ENDPOINTS[operation.resource_kind]

        if operation.operation_kind == OperationKind.CREATE:
            if operation.resource_kind == ResourceKind.INVENTORY:
                response = self._request("POST", f"{endpoint}/set", self._inventory_payload(operation.payload))
            else:
                response = self._request("POST", endpoint, build_payload(operation.resource_kind, operation.payload))
        elif operation.operation_kind == OperationKind.UPDATE:
            response = self._request(
                "PUT", f"{endpoint}/{operation.external_id}",
                build_payload(operation.resource_kind, operation.payload),
            )
        elif operation.operation_kind == OperationKind.DELETE:
            response = self._request("DELETE", f"{endpoint}/{operation.external_id}")
        else:
            raise CommerceAPIError(f"Unsupported operation: {operation.operation_kind}")

        response_data = response.json() if response.text else {}
        resource = response_data.get(operation.resource_kind.value) or {}
        target_id = resource.get("id") or operation.external_id

        return OperationResult(
            target_id=str(target_id) if target_id is not None else None,
            response_data=response_data,
        )

    def _inventory_payload(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Body for inventory_levels/set, resolving the location and item ids."""
        payload = build_payload(ResourceKind.INVENTORY, record)
        if payload["location_id"] is None:
            payload["location_id"] = self.config.location_id
        if payload["location_id"] is None:
            raise CommerceAPIError("Inventory levels need a location id (set SHOP_LOCATION_ID)", status_code=422)
        if payload["inventory_item_id"] is None:
            payload["inventory_item_id"] = self.find_inventory_item_id(record.get("sku"))
        return payload

    def find_inventory_item_id(self, sku: Optional[str]) -> int:
        """Inventory item id of the variant carrying a SKU."""
        if not sku:
            raise CommerceAPIError("Inventory record has neither inventory_item_id nor sku", status_code=422)

        data = self.graphql(_VARIANT_BY_SKU_QUERY, {"query": f"sku:{sku}"})
        edges = (data.get("productVariants") or {}).get("edges") or []
        if not edges:
            raise CommerceAPIError(f"No variant with SKU {sku}", status_code=404)

        # gid://shopify/InventoryItem/123 -> 123
        return int(edges[0]["node"]["inventoryItem"]["id"].rsplit("/", 1)[-1])

    def _dry_run_execute(self, operation: Operation) -> OperationResult:
        if operation.resource_kind == ResourceKind.INVENTORY:
            # Setting a level creates nothing a rollback could delete
            body = build_payload(ResourceKind.INVENTORY, operation.payload)
            return OperationResult(target_id=None, response_data={"dry_run": True, "inventory_level": body})

        store = self._dry_run_store.setdefault(operation.resource_kind, {})

        if operation.operation_kind == OperationKind.DELETE:
            store.pop(str(operation.external_id), None)
            return OperationResult(target_id=operation.external_id)

        target_id = operation.external_id or f"dry_run_{next(self._dry_run_ids)}"
        body = build_payload(operation.resource_kind, operation.payload)
        resource = body.get(operation.resource_kind.value, body)
        store[str(target_id)] = flatten_resource(operation.resource_kind, {**resource, "id": target_id})
        return OperationResult(target_id=str(target_id), response_data={"dry_run": True})

    def delete_resource(self, resource_kind: ResourceKind, target_id: str) -> bool:
        """Delete a resource by its target id."""
        self.execute_operation(Operation(
            operation_kind=OperationKind.DELETE,
            resource_kind=resource_kind,
            external_id=target_id,
        ))
        return True

    def list_resources(self, resource_kind: ResourceKind, limit: int = 250) -> List[Dict[str, Any]]:
        """Read every resource of a kind, flattened to the transformed-record shape."""
        if not self.supports_listing(resource_kind):
            raise CommerceAPIError(f"{resource_kind.value} resources cannot be listed")
        if self.dry_run:
            return list(self._dry_run_store.get(resource_kind, {}).values())

        endpoint = RESOURCE_ENDPOINTS[resource_kind]
        key = endpoint
        resources: List[Dict[str, Any]] = []

        response = self._request("GET", endpoint, params={"limit": limit})
        while True:
            data = response.json() if response.text else {}
            resources.extend(flatten_resource(resource_kind, r) for r in data.get(key, []))

            next_link = response.links.get("next", {}).get("url")
            if not next_link:
                break
            response = self._request("GET", "", url=next_link)

        logger.info(f"Fetched {len(resources)} {resource_kind.value} records")
        return resources

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a GraphQL query and return its data block."""
        response = self._request("POST", "graphql", {"query": query, "variables": variables or {}})
        body = response.json()

        errors = body.get("errors")
        if errors:
            message = "; ".join(str(e.get("message", e)) for e in errors) if isinstance(errors, list) else str(errors)
            throttled = any(
                isinstance(e, dict) and e.get("extensions", {}).get("code") == "THROTTLED"
                for e in (errors if isinstance(errors, list) else [])
            )
            if throttled:
                raise CommerceAPIError(f"GraphQL rate limit: {message}", status_code=429)
            raise CommerceAPIError(f"GraphQL Error: {message}")

        return body.get("data") or {}

    def submit_bulk_import(self, resource_kind: ResourceKind, records: List[Dict[str, Any]]) -> str:
        """
        Stage a JSONL upload and start a bulk mutation over it.

        Returns:
            Bulk operation id

        Raises:
            BulkOperationError: When the platform rejects the job
        """
        mutation = BULK_MUTATIONS.get(resource_kind)
        if not mutation:
            raise BulkOperationError(f"Bulk import is not supported for {resource_kind.value}")

        lines = [json.dumps({"input": to_graphql_input(resource_kind, r)}) for r in records]

        if self.dry_run:
            store = self._dry_run_store.setdefault(resource_kind, {})
            for record in records:
                target_id = f"dry_run_{next(self._dry_run_ids)}"
                store[target_id] = {**record, "id": target_id}
            return f"gid://dry-run/BulkOperation/{len(lines)}"

        staged = self.graphql(_STAGED_UPLOAD_MUTATION)["stagedUploadsCreate"]
        if staged.get("userErrors"):
            raise BulkOperationError(f"Staged upload rejected: {staged['userErrors']}")
        target = staged["stagedTargets"][0]
        parameters = {p["name"]: p["value"] for p in target["parameters"]}

        try:
            upload = requests.post(
                target["url"],
                data=parameters,
                files={"file": ("bulk_op_vars.jsonl", "\n".join(lines).encode("utf-8"), "text/jsonl")},
                timeout=self.config.timeout,
            )
            upload.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise BulkOperationError(f"Staged upload failed: {e}") from e

        result = self.graphql(_BULK_RUN_MUTATION, {
            "mutation": mutation,
            "stagedUploadPath": parameters.get("key", ""),
        })["bulkOperationRunMutation"]

        if result.get("userErrors"):
            raise BulkOperationError(f"Bulk operation rejected: {result['userErrors']}")

        operation_id = result["bulkOperation"]["id"]
        logger.info(f"Started bulk {resource_kind.value} import {operation_id} with {len(lines)} records")
        return operation_id

    def get_bulk_operation_status(self, operation_id: str) -> Dict[str, Any]:
        """Status of a bulk job: id, status, errorCode, objectCount."""
        if self.dry_run:
            return {"id": operation_id, "status": "COMPLETED", "errorCode": None}
        node = self.graphql(_BULK_STATUS_QUERY, {"id": operation_id}).get("node")
        if not node:
            raise BulkOperationError(f"Bulk operation not found: {operation_id}")
        return node

    def setup_webhooks(self, base_url: str) -> List[str]:
        """Register the migration webhooks; returns the topics registered."""
        registered = []
        for topic in WEBHOOK_TOPICS:
            address = f"{base_url.rstrip('/')}/webhooks/{topic.replace('/', '-')}"
            if not self.dry_run:
                self._request("POST", "webhooks", {
                    "webhook": {"topic": topic, "address": address, "format": "json"}
                })
            registered.append(topic)
        logger.info(f"Registered {len(registered)} webhooks at {base_url}")
        return registered
