"""
Built-in in-process tool handlers.

Demonstration handlers backed by per-tenant mock data. Real deployments
point tenants at webhooks or register their own handlers at startup.
Handlers raise ToolExecutionError for domain failures (unknown ids,
invalid input); the invoker turns that into a tool error result.
"""
import logging
import random
from datetime import date, datetime
from typing import Any, Dict

from ..config.tenant_config import TenantConfig
from ..exceptions import ToolExecutionError
from .registry import ToolContext, handler_registry

logger = logging.getLogger(__name__)


MOCK_ACCOUNTS = {
    "company-1": {
        "ACC-123": {
            "name": "John Doe",
            "email": "john@example.com",
            "plan": "Premium",
            "billingCycle": "Monthly",
            "nextBillingDate": "2023-07-01"
        },
        "ACC-456": {
            "name": "Jane Smith",
            "email": "jane@example.com",
            "plan": "Basic",
            "billingCycle": "Annual",
            "nextBillingDate": "2023-12-15"
        }
    },
    "company-2": {
        "ACC-123": {
            "name": "Alice Johnson",
            "email": "alice@example.com",
            "membershipLevel": "Gold",
            "points": 1250,
            "memberSince": "2020-03-15"
        },
        "ACC-456": {
            "name": "Bob Williams",
            "email": "bob@example.com",
            "membershipLevel": "Silver",
            "points": 750,
            "memberSince": "2021-08-22"
        }
    }
}

MOCK_ORDERS = {
    "company-1": {
        "ORD-123": {"status": "shipped", "estimatedDelivery": "2023-06-15", "carrier": "FedEx", "trackingNumber": "1234567890"},
        "ORD-456": {"status": "processing", "estimatedShipDate": "2023-06-10"},
        "ORD-789": {"status": "delivered", "deliveryDate": "2023-06-01"}
    },
    "company-2": {
        "ORD-123": {"status": "preparing", "estimatedShipDate": "2023-06-12"},
        "ORD-456": {"status": "out_for_delivery", "estimatedDelivery": "today"},
        "ORD-789": {"status": "cancelled", "reason": "customer request"}
    }
}

MOCK_PRODUCTS = {
    "company-1": {
        "PROD-123": {"name": "Laptop Pro", "inStock": True, "quantity": 15, "locations": ["Store A", "Store C", "Online"]},
        "PROD-456": {"name": "Wireless Headphones", "inStock": True, "quantity": 8, "locations": ["Store B", "Online"]},
        "PROD-789": {"name": "Smart Watch", "inStock": False, "expectedRestock": "2023-06-30"}
    },
    "company-2": {
        "PROD-123": {"name": "Organic Coffee Beans", "inStock": True, "quantity": 25, "locations": ["Store A", "Store B", "Online"]},
        "PROD-456": {"name": "Ceramic Mug Set", "inStock": True, "quantity": 12, "locations": ["Store A", "Online"]},
        "PROD-789": {"name": "French Press", "inStock": False, "expectedRestock": "2023-06-20"}
    }
}

APPOINTMENT_SLOTS = {
    "company-1": {
        "morning": ["09:00", "10:00", "11:00"],
        "afternoon": ["13:00", "14:00", "15:00"],
        "evening": ["17:00", "18:00"]
    },
    "company-2": {
        "morning": ["08:30", "09:30", "10:30"],
        "afternoon": ["12:30", "14:30", "16:30"],
        "evening": ["18:30", "19:30"]
    }
}


@handler_registry.register("account_lookup")
async def account_lookup(
    params: Dict[str, Any],
    tenant_config: TenantConfig,
    context: ToolContext
) -> Dict[str, Any]:
    account_id = params.get("accountId") or context.user_id
    account = MOCK_ACCOUNTS.get(tenant_config.tenant_id, {}).get(account_id)
    if account is None:
        raise ToolExecutionError(f"Account {account_id} not found.")
    return {"accountId": account_id, **account}


@handler_registry.register("order_status")
async def order_status(
    params: Dict[str, Any],
    tenant_config: TenantConfig,
    context: ToolContext
) -> Dict[str, Any]:
    order_id = params.get("orderId")
    if not order_id:
        raise ToolExecutionError("orderId is required")

    order = MOCK_ORDERS.get(tenant_config.tenant_id, {}).get(order_id)
    if order is None:
        raise ToolExecutionError(f"Order {order_id} not found for your account.")
    return {"orderId": order_id, **order}


@handler_registry.register("billing_check")
async def billing_check(
    params: Dict[str, Any],
    tenant_config: TenantConfig,
    context: ToolContext
) -> Dict[str, Any]:
    """Billing summary derived from the account record."""
    account_id = params.get("accountId") or context.user_id
    account = MOCK_ACCOUNTS.get(tenant_config.tenant_id, {}).get(account_id)
    if account is None:
        raise ToolExecutionError(f"No billing profile for account {account_id}.")

    return {
        "accountId": account_id,
        "plan": account.get("plan") or account.get("membershipLevel"),
        "billingCycle": account.get("billingCycle", "Monthly"),
        "nextBillingDate": account.get("nextBillingDate"),
        "balanceDue": 0.0,
        "status": "current"
    }


@handler_registry.register("technical_diagnostic")
async def technical_diagnostic(
    params: Dict[str, Any],
    tenant_config: TenantConfig,
    context: ToolContext
) -> Dict[str, Any]:
    symptom = (params.get("symptom") or params.get("description") or params.get("query") or "").lower()

    checks = {
        "service_status": "operational",
        "account_flags": "none",
        "recent_incidents": 0
    }

    if any(word in symptom for word in ("login", "password", "sign in")):
        recommendation = "Reset the password and clear browser cookies."
    elif any(word in symptom for word in ("slow", "timeout", "loading")):
        recommendation = "Check network connectivity and retry; no service degradation detected."
    else:
        recommendation = "Restart the application and update to the latest version."

    return {
        "checks": checks,
        "recommendation": recommendation,
        "ranAt": datetime.utcnow().isoformat()
    }


@handler_registry.register("product_info")
async def product_info(
    params: Dict[str, Any],
    tenant_config: TenantConfig,
    context: ToolContext
) -> Dict[str, Any]:
    product_id = params.get("productId")
    if not product_id:
        raise ToolExecutionError("productId is required")

    product = MOCK_PRODUCTS.get(tenant_config.tenant_id, {}).get(product_id)
    if product is None:
        raise ToolExecutionError(f"Product {product_id} not found.")

    result = {"productId": product_id, **product}
    location = params.get("location")
    if location and product.get("inStock") and location not in product.get("locations", []):
        result["inStock"] = False
        result["message"] = (
            f"{product['name']} is not available at {location}, "
            f"but is available at: {', '.join(product['locations'])}"
        )
    return result


@handler_registry.register("schedule_appointment")
async def schedule_appointment(
    params: Dict[str, Any],
    tenant_config: TenantConfig,
    context: ToolContext
) -> Dict[str, Any]:
    service = params.get("service")
    time_slot = params.get("timeSlot")
    requested = params.get("date")
    if not service or not time_slot or not requested:
        raise ToolExecutionError("service, date and timeSlot are required")

    try:
        requested_date = date.fromisoformat(requested)
    except ValueError:
        raise ToolExecutionError(f"Invalid date '{requested}', expected YYYY-MM-DD")

    if requested_date < date.today():
        raise ToolExecutionError("Appointment date must be in the future.")

    slots = APPOINTMENT_SLOTS.get(tenant_config.tenant_id, {}).get(time_slot, [])
    if not slots:
        raise ToolExecutionError(f"No {time_slot} slots available for {requested}.")

    return {
        "confirmationNumber": f"APPT-{random.randint(100000, 999999)}",
        "service": service,
        "date": requested,
        "time": random.choice(slots),
        "notes": "Please arrive 15 minutes before your scheduled time. Bring your ID."
    }


__all__ = [
    'account_lookup',
    'order_status',
    'billing_check',
    'technical_diagnostic',
    'product_info',
    'schedule_appointment'
]
