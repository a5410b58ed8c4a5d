import html
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from urllib.parse import quote

from crm_promotions.core.config import settings

if TYPE_CHECKING:
    from crm_promotions.services.promotion_delivery import PromotionDeliveryData

EMAIL_DEFAULT_NAME = "Valued Customer"
SMS_DEFAULT_NAME = "Customer"
SMS_OPT_OUT_HINT = "Reply STOP to opt out."


def _format_number(value: Decimal | float | int) -> str:
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return str(int(amount))
    return f"{amount.quantize(Decimal('0.01'))}"


def discount_headline(promotion: "PromotionDeliveryData") -> str:
    if promotion.promotion_type == "percentage_off" and promotion.discount_percentage:
        return f"{_format_number(promotion.discount_percentage)}% OFF"
    if promotion.promotion_type == "dollar_off" and promotion.discount_value:
        return f"${_format_number(promotion.discount_value)} OFF"
    return "Special Offer"


def format_long_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def format_short_date(value: date) -> str:
    return f"{value:%b} {value.day}"


def claim_url(claim_code: str) -> str:
    return f"{settings.app_base_url}/dashboard/promotions/claim?code={quote(claim_code)}"


def email_subject(promotion: "PromotionDeliveryData") -> str:
    return f"Special Offer: {promotion.title}"


def render_promotion_email(customer_name: str, promotion: "PromotionDeliveryData", claim_code: str) -> str:
    """Build the HTML body for a promotion email.

    Every interpolated value is HTML-escaped. The promo code block only
    appears when the promotion carries a shared code; the personal claim
    code and claim link are always present.
    """
    name = html.escape(customer_name or EMAIL_DEFAULT_NAME)
    headline = html.escape(discount_headline(promotion))
    title = html.escape(promotion.title)
    code = html.escape(claim_code)
    link = html.escape(claim_url(claim_code), quote=True)

    description_html = ""
    if promotion.description:
        description_html = f"<p>{html.escape(promotion.description)}</p>"

    promo_code_html = ""
    if promotion.promo_code:
        promo_code_html = f"""
        <p>Promo Code:</p>
        <p style="font-family: monospace; font-size: 24px; font-weight: bold;">{html.escape(promotion.promo_code)}</p>"""

    terms_html = ""
    if promotion.terms_and_conditions:
        terms_html = f"""
      <div style="font-size: 12px; color: #666;">
        <p><strong>Terms &amp; Conditions</strong></p>
        <p>{html.escape(promotion.terms_and_conditions)}</p>
      </div>"""

    return f"""<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>{html.escape(email_subject(promotion))}</title></head>
  <body style="font-family: Arial, sans-serif; color: #1a1a1a;">
    <p>Hi {name},</p>
    <p>We have an exclusive offer just for you!</p>
    <div style="background-color: #3b82f6; color: #ffffff; padding: 32px; text-align: center;">
      <h2>{headline}</h2>
      <h3>{title}</h3>
      {description_html}
    </div>
    <div style="text-align: center; padding: 24px;">{promo_code_html}
      <p>Your Claim Code:</p>
      <p style="font-family: monospace; font-size: 20px; font-weight: bold;">{code}</p>
      <p><a href="{link}">Claim Your Offer</a></p>
    </div>
    <p>Valid from {format_long_date(promotion.start_date)} to {format_long_date(promotion.end_date)}.</p>{terms_html}
  </body>
</html>
"""


def _shorten(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def render_promotion_sms(customer_name: str, promotion: "PromotionDeliveryData", claim_code: str) -> str:
    """Build the SMS body within ``settings.sms_max_length`` characters.

    The claim code, expiry and opt-out hint are never cut. When the message
    is too long the title is shortened first. If no title fits it is dropped
    and the greeting name is shortened instead; as a last resort only the
    discount headline is kept in front of the code.
    """
    max_length = settings.sms_max_length
    name = customer_name or SMS_DEFAULT_NAME
    headline = discount_headline(promotion)
    tail = f"Use code {claim_code} by {format_short_date(promotion.end_date)}. {SMS_OPT_OUT_HINT}"
    budget = max_length - len(tail) - 1

    title_room = budget - len(f"Hi {name}! {headline}: .")
    if title_room >= len(promotion.title) or title_room >= 4:
        return f"Hi {name}! {headline}: {_shorten(promotion.title, title_room)}. {tail}"

    name_room = budget - len(f"Hi ! {headline}.")
    if name_room >= 4:
        return f"Hi {_shorten(name, name_room)}! {headline}. {tail}"

    if budget >= len(headline) + 1:
        return f"{headline}. {tail}"
    return tail
