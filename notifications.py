"""Order emails (Resend) and push notifications (OneSignal)"""
from html import escape

import httpx
from config import (
    RESEND_API_KEY,
    EMAIL_FROM,
    ONESIGNAL_APP_ID,
    ONESIGNAL_REST_API_KEY,
    SITE_URL,
    DEFAULT_LANGUAGE,
)

RESEND_URL = "https://api.resend.com/emails"
ONESIGNAL_URL = "https://onesignal.com/api/v1/notifications"

# ============================================================
# Email templates
# ============================================================
EMAIL_SUBJECTS = {
    "ru": {
        "pending": "Заказ #{number} принят - Азия Фарм",
        "processing": "Заказ #{number} оплачен - Азия Фарм",
        "shipped": "Заказ #{number} отправлен - Азия Фарм",
        "delivered": "Заказ #{number} доставлен - Азия Фарм",
        "cancelled": "Заказ #{number} отменен - Азия Фарм",
    },
    "en": {
        "pending": "Order #{number} received - Asia Pharm",
        "processing": "Order #{number} paid - Asia Pharm",
        "shipped": "Order #{number} shipped - Asia Pharm",
        "delivered": "Order #{number} delivered - Asia Pharm",
        "cancelled": "Order #{number} cancelled - Asia Pharm",
    },
    "zh": {
        "pending": "订单 #{number} 已收到 - 亚洲药房",
        "processing": "订单 #{number} 已付款 - 亚洲药房",
        "shipped": "订单 #{number} 已发货 - 亚洲药房",
        "delivered": "订单 #{number} 已送达 - 亚洲药房",
        "cancelled": "订单 #{number} 已取消 - 亚洲药房",
    },
    "vi": {
        "pending": "Đơn hàng #{number} đã nhận - Asia Pharm",
        "processing": "Đơn hàng #{number} đã thanh toán - Asia Pharm",
        "shipped": "Đơn hàng #{number} đã gửi - Asia Pharm",
        "delivered": "Đơn hàng #{number} đã giao - Asia Pharm",
        "cancelled": "Đơn hàng #{number} đã hủy - Asia Pharm",
    },
}

EMAIL_LABELS = {
    "ru": {"items": "Товары", "shipping": "Доставка", "points": "Списано баллов",
           "promo": "Промокод", "total": "Итого", "tracking": "Трек-номер", "earned": "Начислено баллов"},
    "en": {"items": "Items", "shipping": "Delivery", "points": "Points used",
           "promo": "Promo code", "total": "Total", "tracking": "Tracking number", "earned": "Points earned"},
    "zh": {"items": "商品", "shipping": "运费", "points": "已用积分",
           "promo": "优惠码", "total": "合计", "tracking": "运单号", "earned": "获得积分"},
    "vi": {"items": "Sản phẩm", "shipping": "Giao hàng", "points": "Điểm đã dùng",
           "promo": "Mã khuyến mãi", "total": "Tổng cộng", "tracking": "Mã vận đơn", "earned": "Điểm nhận được"},
}

# ============================================================
# Push templates
# ============================================================
PUSH_TEMPLATES = {
    "order_pending": {
        "ru": ("✅ Заказ оформлен", "Вы оформили заказ {number}"),
        "en": ("✅ Order Created", "You have placed order {number}"),
        "zh": ("✅ 订单已创建", "您已下单 {number}"),
        "vi": ("✅ Đơn hàng đã tạo", "Bạn đã đặt đơn hàng {number}"),
    },
    "order_processing": {
        "ru": ("💳 Оплата получена", "Мы получили оплату Вашего заказа"),
        "en": ("💳 Payment Received", "We have received payment for your order"),
        "zh": ("💳 已收到付款", "我们已收到您的订单付款"),
        "vi": ("💳 Đã nhận thanh toán", "Chúng tôi đã nhận được thanh toán cho đơn hàng của bạn"),
    },
    "order_shipped": {
        "ru": ("📦 Заказ отправлен", "Ваш заказ отправлен"),
        "en": ("📦 Order Shipped", "Your order has been shipped"),
        "zh": ("📦 订单已发货", "您的订单已发货"),
        "vi": ("📦 Đơn hàng đã gửi", "Đơn hàng của bạn đã được gửi đi"),
    },
    "order_delivered": {
        "ru": ("🎉 Заказ доставлен", "Благодарим Вас за заказ! Ваш заказ выполнен"),
        "en": ("🎉 Order Delivered", "Thank you for your order! Your order is complete"),
        "zh": ("🎉 订单已送达", "感谢您的订单！您的订单已完成"),
        "vi": ("🎉 Đơn hàng đã giao", "Cảm ơn bạn đã đặt hàng! Đơn hàng của bạn đã hoàn thành"),
    },
    "order_cancelled": {
        "ru": ("❌ Заказ отменен", "К сожалению Ваш заказ был отменен"),
        "en": ("❌ Order Cancelled", "Unfortunately your order has been cancelled"),
        "zh": ("❌ 订单已取消", "很抱歉，您的订单已被取消"),
        "vi": ("❌ Đơn hàng đã hủy", "Rất tiếc, đơn hàng của bạn đã bị hủy"),
    },
    "loyalty_earned": {
        "ru": ("⭐ Баллы начислены", "Начислено баллов лояльности: {points}"),
        "en": ("⭐ Points Earned", "Loyalty points earned: {points}"),
        "zh": ("⭐ 积分已添加", "已添加忠诚度积分: {points}"),
        "vi": ("⭐ Điểm đã thêm", "Điểm thưởng đã nhận: {points}"),
    },
    "loyalty_spent": {
        "ru": ("💎 Баллы списаны", "Списано баллов лояльности: {points}"),
        "en": ("💎 Points Spent", "Loyalty points spent: {points}"),
        "zh": ("💎 积分已使用", "已使用忠诚度积分: {points}"),
        "vi": ("💎 Điểm đã dùng", "Điểm thưởng đã sử dụng: {points}"),
    },
}


def order_label(order: dict) -> str:
    return order.get("order_number") or str(order.get("id", ""))[:6]


def email_subject(order: dict, status: str, language: str = DEFAULT_LANGUAGE) -> str:
    subjects = EMAIL_SUBJECTS.get(language) or EMAIL_SUBJECTS[DEFAULT_LANGUAGE]
    template = subjects.get(status) or EMAIL_SUBJECTS[DEFAULT_LANGUAGE]["pending"]
    return template.format(number=order_label(order))


def email_html(order: dict, language: str = DEFAULT_LANGUAGE) -> str:
    labels = EMAIL_LABELS.get(language) or EMAIL_LABELS[DEFAULT_LANGUAGE]
    parts = [f"<h2>#{escape(order_label(order))}</h2>", f"<p><strong>{labels['items']}</strong></p>", "<ul>"]
    for item in order.get("items") or []:
        parts.append(
            f"<li>{escape(str(item.get('name', '')))} × {item.get('quantity', 1)}"
            f" = {item.get('line_total', item.get('price', 0) * item.get('quantity', 1)):,} ₽</li>"
        )
    parts.append("</ul>")
    parts.append(f"<p>{labels['shipping']}: {order.get('shipping_cost') or 0:,} ₽</p>")
    if order.get("loyalty_points_used"):
        parts.append(f"<p>{labels['points']}: -{order['loyalty_points_used']:,} ₽</p>")
    if order.get("promo_code"):
        parts.append(f"<p>{labels['promo']} {escape(order['promo_code'])}: -{order.get('promo_discount') or 0:,} ₽</p>")
    if order.get("loyalty_points_earned"):
        parts.append(f"<p>{labels['earned']}: {order['loyalty_points_earned']:,}</p>")
    if order.get("tracking_number"):
        parts.append(f"<p>{labels['tracking']}: {escape(order['tracking_number'])}</p>")
    parts.append(f"<p><strong>{labels['total']}: {order.get('total') or 0:,} ₽</strong></p>")
    return "\n".join(parts)


def push_url(kind: str, order: dict | None = None) -> str:
    order = order or {}
    if kind == "order_pending":
        return f"{SITE_URL}/checkout?order={order.get('id', '')}"
    if kind == "order_shipped":
        return f"{SITE_URL}/profile?tab=orders&order={order.get('id', '')}"
    if kind.startswith("order_"):
        return f"{SITE_URL}/profile?tab=orders"
    if kind.startswith("loyalty_"):
        return f"{SITE_URL}/profile?tab=loyalty"
    return SITE_URL


def push_content(kind: str, language: str = DEFAULT_LANGUAGE, order: dict | None = None, points: int | None = None) -> dict:
    templates = PUSH_TEMPLATES.get(kind)
    if not templates:
        return {"title": "Уведомление", "message": "У вас новое уведомление", "url": SITE_URL}
    title, message = templates.get(language) or templates[DEFAULT_LANGUAGE]
    return {
        "title": title,
        "message": message.format(number=order_label(order or {}), points=points or 0),
        "url": push_url(kind, order),
    }


class Notifier:
    def __init__(self, db=None, resend_api_key=RESEND_API_KEY, onesignal_app_id=ONESIGNAL_APP_ID,
                 onesignal_api_key=ONESIGNAL_REST_API_KEY, transport=None):
        self.db = db
        self.resend_api_key = resend_api_key
        self.onesignal_app_id = onesignal_app_id
        self.onesignal_api_key = onesignal_api_key
        self._transport = transport

    async def send_order_email(self, order: dict, kind: str = "new") -> dict:
        """kind: new / status_update / tracking"""
        email = order.get("email")
        if not email:
            return {"success": False, "reason": "no email"}
        if not self.resend_api_key:
            print(f"[Email] RESEND_API_KEY not set, skipping order #{order_label(order)}")
            return {"success": False, "reason": "RESEND_API_KEY not configured"}

        status = {"new": "pending", "tracking": "shipped"}.get(kind, order.get("status", "processing"))
        language = order.get("language") or DEFAULT_LANGUAGE
        payload = {
            "from": EMAIL_FROM,
            "to": [email],
            "subject": email_subject(order, status, language),
            "html": email_html(order, language),
        }

        try:
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                resp = await client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.resend_api_key}", "Content-Type": "application/json"},
                    json=payload,
                )
            if resp.status_code not in (200, 201):
                print(f"[Email] Resend error ({resp.status_code}): {resp.text[:200]}")
                return {"success": False, "error": f"Resend API returned {resp.status_code}"}
            email_id = resp.json().get("id")
            print(f"[Email] ✅ {kind} email for #{order_label(order)} sent: {email_id}")
            return {"success": True, "email_id": email_id}
        except httpx.HTTPError as e:
            print(f"[Email] send failed: {e}")
            return {"success": False, "error": str(e)}

    async def _player_ids(self, user_id):
        if self.db is None:
            return []
        rows = await self.db.select(
            "push_subscriptions",
            [("user_id", "eq", user_id), ("is_subscribed", "eq", True)],
            columns="player_id",
        )
        return [r["player_id"] for r in rows if r.get("player_id")]

    async def send_push(self, user_id, kind: str, order: dict | None = None, points: int | None = None,
                        language: str | None = None) -> dict:
        if not user_id:
            return {"success": False, "reason": "no user"}
        if not (self.onesignal_app_id and self.onesignal_api_key):
            print(f"[Push] OneSignal not configured, skipping {kind}")
            return {"success": False, "reason": "OneSignal configuration missing"}

        try:
            player_ids = await self._player_ids(user_id)
            if not player_ids:
                return {"success": False, "reason": "No active push subscriptions found"}

            language = language or (order or {}).get("language") or DEFAULT_LANGUAGE
            content = push_content(kind, language, order, points)
            payload = {
                "app_id": self.onesignal_app_id,
                "include_player_ids": player_ids,
                "headings": {"en": content["title"]},
                "contents": {"en": content["message"]},
                "url": content["url"],
                "data": {
                    "type": kind,
                    "orderId": (order or {}).get("id"),
                    "orderNumber": (order or {}).get("order_number"),
                    "trackingNumber": (order or {}).get("tracking_number"),
                    "points": points,
                },
            }
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                resp = await client.post(
                    ONESIGNAL_URL,
                    headers={"Authorization": f"Basic {self.onesignal_api_key}", "Content-Type": "application/json"},
                    json=payload,
                )
            if resp.status_code not in (200, 201):
                print(f"[Push] OneSignal error ({resp.status_code}): {resp.text[:200]}")
                return {"success": False, "error": f"OneSignal API returned {resp.status_code}"}
            print(f"[Push] ✅ {kind} sent to {len(player_ids)} device(s)")
            return {"success": True, "recipients": len(player_ids)}
        except Exception as e:
            print(f"[Push] send failed: {e}")
            return {"success": False, "error": str(e)}
