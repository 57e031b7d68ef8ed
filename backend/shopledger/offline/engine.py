# backend/shopledger/offline/engine.py
"""
Reconciliation engine.

Every write follows the same steps:
1. validate locally (LocalValidationError: nothing mutated, sent or queued)
2. apply the change to the local cache, with a temporary id for creates
3. send it, unless the device is offline or the action points at a record
   that only has a temporary id yet; those go straight to the queue
   - connectivity failure -> queued, reported as "queued"
   - server rejection -> reload from the server, then re-raise
   - success -> the server record replaces the optimistic one

Views read `engine.state`, an immutable snapshot rebuilt after each change.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from shopledger.numeric import MONEY_PLACES, QTY_PLACES, fits_scale, to_decimal, to_json_number
from shopledger.periods import parse_period, period_start
from shopledger.time_utils import parse_iso_datetime, to_utc_z, utcnow
from shopledger.validation import LOSS_REASONS, MAX_AMOUNT

from .config import AgentConfig
from .errors import ConnectivityError, LocalValidationError, ServerRejectedError
from .ids import is_temporary, new_temporary_id, parse_record_id
from .store import DeviceStore, QueuedAction, rewrite_value
from .transport import ENTITY_PATHS, EXPENSES_PATH, PRODUCTS_PATH, REPORT_PATH, SALES_PATH, ApiClient
from .worker import DrainResult, SyncWorker

logger = logging.getLogger(__name__)

SYNCED = "synced"
QUEUED = "queued"

MOVEMENT_TYPES = ("IN", "OUT")

ACTION_ENTITIES = {
    "product_create": "products",
    "product_update": "products",
    "product_delete": "products",
    "stock_move": "products",
    "stock_loss": "products",
    "sale_create": "sales",
    "sale_update": "sales",
    "sale_delete": "sales",
    "expense_create": "expenses",
    "expense_update": "expenses",
    "expense_delete": "expenses",
}


@dataclass(frozen=True)
class SyncResult:
    status: str
    record: dict | None = None
    qid: int | None = None

    @property
    def queued(self) -> bool:
        return self.status == QUEUED


@dataclass(frozen=True)
class AppState:
    """Snapshot handed to views. Replaced wholesale, never mutated in place."""

    products: tuple = ()
    sales: tuple = ()
    expenses: tuple = ()
    pending_usage: tuple = ()

    def product(self, product_id) -> dict | None:
        key = str(product_id)
        for p in self.products:
            if str(p["id"]) == key:
                return p
        return None


# ---------------------------------------------------------------------------
# Local validation
# ---------------------------------------------------------------------------

def _number(value, field: str, places: int) -> Decimal:
    try:
        d = to_decimal(value)
    except ValueError:
        raise LocalValidationError(f"{field} must be a number")
    if not fits_scale(d, places):
        raise LocalValidationError(f"{field} allows at most {places} decimal places")
    return d


def _positive(value, field: str, places: int = QTY_PLACES) -> Decimal:
    d = _number(value, field, places)
    if d <= 0:
        raise LocalValidationError(f"{field} must be > 0")
    if d > MAX_AMOUNT:
        raise LocalValidationError(f"{field} is too large")
    return d


def _non_negative(value, field: str, places: int = QTY_PLACES) -> Decimal:
    d = _number(value, field, places)
    if d < 0:
        raise LocalValidationError(f"{field} must be >= 0")
    if d > MAX_AMOUNT:
        raise LocalValidationError(f"{field} is too large")
    return d


def _text(value, field: str) -> str:
    s = str(value or "").strip()
    if not s:
        raise LocalValidationError(f"{field} cannot be blank")
    return s


def _record_id(value, what: str):
    try:
        return parse_record_id(value)
    except ValueError:
        raise LocalValidationError(f"Invalid {what} id: {value!r}")


def _qty_of(record: dict) -> Decimal:
    return to_decimal(record.get("qty") or 0)


def _created_at(record: dict):
    try:
        return parse_iso_datetime(record.get("created_at"))
    except ValueError:
        return None


class ReconciliationEngine:
    def __init__(self, *, api: ApiClient, store: DeviceStore, online: bool = True):
        self.api = api
        self.store = store
        self._online = online
        self._usage: list[dict] = []
        self.state = AppState()
        self.worker = SyncWorker(self)
        self._refresh_state()

    @classmethod
    def from_config(cls, config: AgentConfig, *, transport=None, online: bool = True) -> "ReconciliationEngine":
        api = ApiClient(config.api_base, timeout=config.timeout, transport=transport)
        return cls(api=api, store=DeviceStore(config.cache_path), online=online)

    @property
    def online(self) -> bool:
        return self._online

    def close(self) -> None:
        self.api.close()
        self.store.close()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _refresh_state(self) -> None:
        cache = self.store.cache
        products = sorted(cache.get_all("products"), key=lambda p: str(p.get("name") or "").lower())
        sales = sorted(cache.get_all("sales"), key=lambda s: str(s.get("created_at") or ""), reverse=True)
        expenses = sorted(cache.get_all("expenses"), key=lambda e: str(e.get("created_at") or ""), reverse=True)
        self.state = AppState(
            products=tuple(products),
            sales=tuple(sales),
            expenses=tuple(expenses),
            pending_usage=tuple(dict(u) for u in self._usage),
        )

    def load_all(self) -> bool:
        """
        Replace every entity cache with the server's records.

        Temporary records whose create is still queued are kept. When the server
        cannot be reached the cached snapshot is rendered instead and False is
        returned.
        """
        try:
            fetched = {entity: self.api.get(path) or [] for entity, path in ENTITY_PATHS.items()}
        except ConnectivityError:
            logger.info("Backend unreachable; rendering from local cache")
            self._refresh_state()
            return False
        except ServerRejectedError as exc:
            logger.warning("Reload failed, keeping local cache: %s", exc)
            self._refresh_state()
            return False

        keep = self.store.queue.pending_creates()
        for entity, records in fetched.items():
            self.store.cache.replace_all(entity, records, keep=keep)

        known = {str(p["id"]) for p in self.store.cache.get_all("products")}
        self._usage = [u for u in self._usage if str(u["product_id"]) in known]
        self._refresh_state()
        return True

    def _cached(self, entity: str, record_id, label: str) -> dict:
        record = self.store.cache.get(entity, record_id)
        if record is None:
            raise LocalValidationError(f"{label} not found")
        return record

    def _adjust_product_qty(self, product_id, delta: Decimal) -> None:
        product = self.store.cache.get("products", product_id)
        if product is None:
            return
        product["qty"] = to_json_number(_qty_of(product) + delta)
        product["updated_at"] = to_utc_z(utcnow())
        self.store.cache.put("products", product)

    # ------------------------------------------------------------------
    # Send or queue
    # ------------------------------------------------------------------

    def _submit(
        self,
        *,
        kind: str,
        method: str,
        path: str,
        body=None,
        creates: str | None = None,
        refs=(),
        optimistic: dict | None = None,
    ) -> SyncResult:
        waiting_on_temp = any(is_temporary(r) for r in refs)
        if not self._online or waiting_on_temp:
            action = self.store.queue.enqueue(kind=kind, method=method, path=path, body=body, creates=creates)
            self._refresh_state()
            return SyncResult(QUEUED, record=optimistic, qid=action.qid)

        try:
            record = self.api.request(method, path, body)
        except ConnectivityError:
            action = self.store.queue.enqueue(kind=kind, method=method, path=path, body=body, creates=creates)
            self._refresh_state()
            return SyncResult(QUEUED, record=optimistic, qid=action.qid)
        except ServerRejectedError as exc:
            logger.warning("%s %s %s rejected: %s", kind, method, path, exc)
            # drop the optimistic change the server refused
            self.load_all()
            raise

        self._refresh_state()
        return SyncResult(SYNCED, record=record)

    def confirm_created(self, kind: str, temp: str, record: dict) -> None:
        """Swap a temporary record for the server's and repoint every local reference."""
        entity = ACTION_ENTITIES[kind]
        server_id = record["id"]
        cache = self.store.cache

        cache.delete(entity, temp)
        cache.put(entity, record)
        changed = self.store.queue.rewrite_reference(temp, server_id)

        if entity == "products":
            for sale in cache.get_all("sales"):
                rewritten = rewrite_value(sale, temp, server_id)
                if rewritten != sale:
                    cache.put("sales", rewritten)
            self._usage = [rewrite_value(u, temp, server_id) for u in self._usage]

        logger.info("Confirmed %s %s as id=%s (%s queued action(s) updated)", entity, temp, server_id, changed)
        self._refresh_state()

    # ------------------------------------------------------------------
    # Products and stock
    # ------------------------------------------------------------------

    def add_product(self, *, name, sku="", unit="pcs", reorder_level=0, initial_qty=0) -> SyncResult:
        name = _text(name, "name")
        sku = str(sku or "").strip()
        unit = str(unit or "").strip() or "pcs"
        reorder = _non_negative(reorder_level, "reorder_level")
        initial = _non_negative(initial_qty, "initial_qty")

        temp = new_temporary_id()
        now = to_utc_z(utcnow())
        optimistic = {
            "id": temp.wire,
            "name": name,
            "sku": sku,
            "unit": unit,
            "qty": to_json_number(initial),
            "reorder_level": to_json_number(reorder),
            "created_at": now,
            "updated_at": now,
        }
        self.store.cache.put("products", optimistic)

        body = {
            "name": name,
            "sku": sku,
            "unit": unit,
            "reorder_level": to_json_number(reorder),
            "initial_qty": to_json_number(initial),
        }
        result = self._submit(
            kind="product_create", method="POST", path=PRODUCTS_PATH,
            body=body, creates=temp.wire, optimistic=optimistic,
        )
        if not result.queued:
            self.confirm_created("product_create", temp.wire, result.record)
        return result

    def update_product(self, product_id, *, name, sku=None, unit=None, reorder_level=None) -> SyncResult:
        """Metadata only. qty changes go through stock_move / record_loss / sales."""
        pid = _record_id(product_id, "product")
        product = self._cached("products", pid, "Product")

        body = {"name": _text(name, "name")}
        if sku is not None:
            body["sku"] = str(sku).strip()
        if unit is not None:
            body["unit"] = str(unit).strip() or "pcs"
        if reorder_level is not None:
            body["reorder_level"] = to_json_number(_non_negative(reorder_level, "reorder_level"))

        product.update(body)
        product["updated_at"] = to_utc_z(utcnow())
        self.store.cache.put("products", product)

        result = self._submit(
            kind="product_update", method="PUT", path=f"{PRODUCTS_PATH}/{pid}",
            body=body, refs=(pid,), optimistic=product,
        )
        if not result.queued:
            self.store.cache.put("products", result.record)
            self._refresh_state()
        return result

    def delete_product(self, product_id) -> SyncResult:
        pid = _record_id(product_id, "product")
        self._cached("products", pid, "Product")

        key = str(pid)
        for sale in self.store.cache.get_all("sales"):
            if any(str(item.get("product_id")) == key for item in sale.get("items") or []):
                raise LocalValidationError("Product is used by existing sales")

        self.store.cache.delete("products", pid)
        self._usage = [u for u in self._usage if str(u["product_id"]) != key]

        return self._submit(
            kind="product_delete", method="DELETE", path=f"{PRODUCTS_PATH}/{pid}", refs=(pid,),
        )

    def _stock_out_allowed(self, product: dict, qty: Decimal) -> None:
        available = _qty_of(product)
        if available - qty < 0:
            raise LocalValidationError(
                f"Insufficient stock for {product.get('name')}: "
                f"available {to_json_number(available)}, requested {to_json_number(qty)}"
            )

    def stock_move(self, product_id, movement_type, qty, note=None) -> SyncResult:
        pid = _record_id(product_id, "product")
        movement_type = str(movement_type or "").strip().upper()
        if movement_type not in MOVEMENT_TYPES:
            raise LocalValidationError("type must be IN or OUT")
        qty = _positive(qty, "qty")
        product = self._cached("products", pid, "Product")
        if movement_type == "OUT":
            self._stock_out_allowed(product, qty)

        self._adjust_product_qty(pid, qty if movement_type == "IN" else -qty)

        body = {"type": movement_type, "qty": to_json_number(qty), "note": note}
        result = self._submit(
            kind="stock_move", method="POST", path=f"{PRODUCTS_PATH}/{pid}/move",
            body=body, refs=(pid,), optimistic=self.store.cache.get("products", pid),
        )
        if not result.queued:
            self.store.cache.put("products", result.record)
            self._refresh_state()
        return result

    def record_loss(self, product_id, reason, qty, note=None) -> SyncResult:
        """Stock lost to spoilage or mishandling; an OUT movement on the server."""
        pid = _record_id(product_id, "product")
        reason = str(reason or "").strip().upper()
        if reason not in LOSS_REASONS:
            raise LocalValidationError(f"reason must be one of {', '.join(LOSS_REASONS)}")
        qty = _positive(qty, "qty")
        product = self._cached("products", pid, "Product")
        self._stock_out_allowed(product, qty)

        self._adjust_product_qty(pid, -qty)

        body = {"reason": reason, "qty": to_json_number(qty), "note": note}
        result = self._submit(
            kind="stock_loss", method="POST", path=f"{PRODUCTS_PATH}/{pid}/loss",
            body=body, refs=(pid,), optimistic=self.store.cache.get("products", pid),
        )
        if not result.queued:
            self.store.cache.put("products", result.record)
            self._refresh_state()
        return result

    # ------------------------------------------------------------------
    # Pending usage (products picked for the next sale)
    # ------------------------------------------------------------------

    def _check_usage(self, items) -> list[tuple[object, Decimal, dict]]:
        lines = []
        totals: dict[str, Decimal] = defaultdict(Decimal)
        products: dict[str, dict] = {}

        for entry in items or []:
            if not isinstance(entry, dict):
                raise LocalValidationError("Invalid item")
            pid = _record_id(entry.get("product_id"), "product")
            qty = _positive(entry.get("qty_used"), "qty_used")
            product = self._cached("products", pid, "Product")
            lines.append((pid, qty, product))
            totals[str(pid)] += qty
            products[str(pid)] = product

        # same product on several lines is checked against its total
        for key, qty in totals.items():
            self._stock_out_allowed(products[key], qty)
        return lines

    def set_usage(self, items) -> tuple:
        lines = self._check_usage(items)
        self._usage = [{"product_id": pid.wire, "qty_used": to_json_number(qty)} for pid, qty, _ in lines]
        self._refresh_state()
        return self.state.pending_usage

    def clear_usage(self) -> None:
        self._usage = []
        self._refresh_state()

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def add_sale(self, *, amount, description, items=None) -> SyncResult:
        """
        Record a sale. `items` defaults to the current pending usage; each item
        stocks out its product.
        """
        amount = _positive(amount, "amount", MONEY_PLACES)
        description = _text(description, "description")
        lines = self._check_usage(self._usage if items is None else items)

        temp = new_temporary_id()
        optimistic = {
            "id": temp.wire,
            "amount": to_json_number(amount),
            "description": description,
            "created_at": to_utc_z(utcnow()),
            "items": [
                {
                    "product_id": pid.wire,
                    "qty_used": to_json_number(qty),
                    "product_name": product.get("name") or "",
                    "product_unit": product.get("unit") or "",
                }
                for pid, qty, product in lines
            ],
        }
        self.store.cache.put("sales", optimistic)
        for pid, qty, _ in lines:
            self._adjust_product_qty(pid, -qty)
        self._usage = []

        body = {
            "amount": to_json_number(amount),
            "description": description,
            "items": [{"product_id": pid.wire, "qty_used": to_json_number(qty)} for pid, qty, _ in lines],
        }
        result = self._submit(
            kind="sale_create", method="POST", path=SALES_PATH, body=body,
            creates=temp.wire, refs=[pid for pid, _, _ in lines], optimistic=optimistic,
        )
        if not result.queued:
            self.confirm_created("sale_create", temp.wire, result.record)
        return result

    def update_sale(self, sale_id, *, amount, description) -> SyncResult:
        """amount/description only; items and stock stay as they are."""
        sid = _record_id(sale_id, "sale")
        sale = self._cached("sales", sid, "Sale")
        body = {
            "amount": to_json_number(_positive(amount, "amount", MONEY_PLACES)),
            "description": _text(description, "description"),
        }
        sale.update(body)
        self.store.cache.put("sales", sale)

        result = self._submit(
            kind="sale_update", method="PUT", path=f"{SALES_PATH}/{sid}",
            body=body, refs=(sid,), optimistic=sale,
        )
        if not result.queued:
            self.store.cache.put("sales", result.record)
            self._refresh_state()
        return result

    def delete_sale(self, sale_id) -> SyncResult:
        """Delete a sale and put its consumed stock back."""
        sid = _record_id(sale_id, "sale")
        sale = self._cached("sales", sid, "Sale")

        for item in sale.get("items") or []:
            self._adjust_product_qty(item["product_id"], to_decimal(item["qty_used"]))
        self.store.cache.delete("sales", sid)

        return self._submit(kind="sale_delete", method="DELETE", path=f"{SALES_PATH}/{sid}", refs=(sid,))

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def add_expense(self, *, amount, description) -> SyncResult:
        amount = _positive(amount, "amount", MONEY_PLACES)
        description = _text(description, "description")

        temp = new_temporary_id()
        optimistic = {
            "id": temp.wire,
            "amount": to_json_number(amount),
            "description": description,
            "created_at": to_utc_z(utcnow()),
        }
        self.store.cache.put("expenses", optimistic)

        body = {"amount": to_json_number(amount), "description": description}
        result = self._submit(
            kind="expense_create", method="POST", path=EXPENSES_PATH,
            body=body, creates=temp.wire, optimistic=optimistic,
        )
        if not result.queued:
            self.confirm_created("expense_create", temp.wire, result.record)
        return result

    def update_expense(self, expense_id, *, amount, description) -> SyncResult:
        eid = _record_id(expense_id, "expense")
        expense = self._cached("expenses", eid, "Expense")
        body = {
            "amount": to_json_number(_positive(amount, "amount", MONEY_PLACES)),
            "description": _text(description, "description"),
        }
        expense.update(body)
        self.store.cache.put("expenses", expense)

        result = self._submit(
            kind="expense_update", method="PUT", path=f"{EXPENSES_PATH}/{eid}",
            body=body, refs=(eid,), optimistic=expense,
        )
        if not result.queued:
            self.store.cache.put("expenses", result.record)
            self._refresh_state()
        return result

    def delete_expense(self, expense_id) -> SyncResult:
        eid = _record_id(expense_id, "expense")
        self._cached("expenses", eid, "Expense")
        self.store.cache.delete("expenses", eid)
        return self._submit(kind="expense_delete", method="DELETE", path=f"{EXPENSES_PATH}/{eid}", refs=(eid,))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def generate_report(self, period=None) -> dict:
        """Server totals when reachable, otherwise a snapshot from the local cache."""
        try:
            period = parse_period(period)
        except ValueError as exc:
            raise LocalValidationError(str(exc))

        if self._online:
            try:
                report = self.api.get(REPORT_PATH, params={"period": period})
                return {**report, "source": "server"}
            except ConnectivityError:
                logger.info("Backend unreachable; building %s report from local cache", period)

        return self.offline_report(period)

    def offline_report(self, period: str, now=None) -> dict:
        since = period_start(period, now)

        def total(records) -> Decimal:
            amount = Decimal("0")
            for r in records:
                created = _created_at(r)
                if created is not None and created >= since:
                    amount += to_decimal(r.get("amount") or 0)
            return amount

        total_sales = total(self.store.cache.get_all("sales"))
        total_expenses = total(self.store.cache.get_all("expenses"))
        return {
            "period": period,
            "from": to_utc_z(since),
            "totals": {
                "totalSales": to_json_number(total_sales),
                "totalExpenses": to_json_number(total_expenses),
                "profit": to_json_number(total_sales - total_expenses),
            },
            "source": "offline",
        }

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def pending_actions(self) -> list[QueuedAction]:
        return self.store.queue.list_all()

    def sync(self) -> DrainResult:
        """Drain the queue now (no-op while offline)."""
        return self.worker.drain()

    def set_online(self, online: bool) -> DrainResult | None:
        was_online = self._online
        self._online = bool(online)
        if self._online and not was_online:
            logger.info("Back online; draining %s queued action(s)", self.store.queue.count())
            return self.sync()
        return None

    def discard_action(self, qid: int) -> QueuedAction:
        """
        Drop one queued action by hand, typically one the server keeps rejecting.

        A discarded create also drops its temporary record.
        """
        action = self.store.queue.get(qid)
        if action is None:
            raise LocalValidationError(f"No queued action with qid {qid}")

        self.store.queue.remove(qid)
        logger.warning("Discarded qid=%s %s %s %s", qid, action.kind, action.method, action.path)

        if action.creates:
            self.store.cache.delete(ACTION_ENTITIES[action.kind], action.creates)
            self._usage = [u for u in self._usage if str(u["product_id"]) != action.creates]
        self._refresh_state()

        if self._online:
            self.sync()
        return action
