"""Customer and partner facing message catalog (English and Georgian)."""

from __future__ import annotations

from typing import Any

from smartpick_api.core.settings import settings

SUPPORTED_LOCALES = ("en", "ka")

MESSAGES: dict[str, dict[str, str]] = {
    "account_not_found": {
        "en": "Points account not found.",
        "ka": "ქულების ანგარიში ვერ მოიძებნა.",
    },
    "zero_delta": {
        "en": "Transaction amount must not be zero.",
        "ka": "ტრანზაქციის თანხა არ შეიძლება იყოს ნული.",
    },
    "insufficient_balance": {
        "en": "Insufficient balance. You need {shortfall} more points.",
        "ka": "არასაკმარისი ბალანსი. გჭირდებათ კიდევ {shortfall} ქულა.",
    },
    "hold_not_found": {
        "en": "Escrow hold not found.",
        "ka": "დაბლოკილი ქულები ვერ მოიძებნა.",
    },
    "reservation_not_found": {
        "en": "Reservation not found.",
        "ka": "ჯავშანი ვერ მოიძებნა.",
    },
    "offer_not_found": {
        "en": "Offer not found.",
        "ka": "შეთავაზება ვერ მოიძებნა.",
    },
    "offer_unavailable": {
        "en": "This offer is no longer available.",
        "ka": "ეს შეთავაზება აღარ არის ხელმისაწვდომი.",
    },
    "offer_pickup_window_closed": {
        "en": "The pickup window for this offer has closed.",
        "ka": "ამ შეთავაზების გატანის დრო ამოიწურა.",
    },
    "quantity_invalid": {
        "en": "You can reserve between 1 and {limit} items.",
        "ka": "შეგიძლიათ დაჯავშნოთ 1-დან {limit} ერთეულამდე.",
    },
    "quantity_unavailable": {
        "en": "Only {available} items are left.",
        "ka": "დარჩენილია მხოლოდ {available} ერთეული.",
    },
    "active_reservation_limit": {
        "en": "You already have {limit} active reservation(s). Pick up or cancel it first.",
        "ka": "თქვენ უკვე გაქვთ {limit} აქტიური ჯავშანი. ჯერ გაიტანეთ ან გააუქმეთ.",
    },
    "user_suspended": {
        "en": "Your account is suspended until {suspended_until}.",
        "ka": "თქვენი ანგარიში შეჩერებულია {suspended_until}-მდე.",
    },
    "user_in_cooldown": {
        "en": "Too many cancellations. You can reserve again at {unlock_at}.",
        "ka": "ძალიან ბევრი გაუქმება. ხელახლა დაჯავშნა შეგიძლიათ {unlock_at}-დან.",
    },
    "invalid_state_transition": {
        "en": "This reservation is already {status}.",
        "ka": "ეს ჯავშანი უკვე არის {status}.",
    },
    "reservation_expired": {
        "en": "This reservation has expired.",
        "ka": "ამ ჯავშანს ვადა გაუვიდა.",
    },
    "reservation_not_due": {
        "en": "This reservation has not expired yet.",
        "ka": "ამ ჯავშანს ვადა ჯერ არ გასვლია.",
    },
    "not_reservation_owner": {
        "en": "This reservation belongs to another customer.",
        "ka": "ეს ჯავშანი სხვა მომხმარებელს ეკუთვნის.",
    },
    "not_reservation_partner": {
        "en": "This reservation belongs to another partner.",
        "ka": "ეს ჯავშანი სხვა პარტნიორს ეკუთვნის.",
    },
    "qr_code_invalid": {
        "en": "Invalid QR code.",
        "ka": "არასწორი QR კოდი.",
    },
    "partner_required": {
        "en": "Only partners can perform this action.",
        "ka": "ეს მოქმედება მხოლოდ პარტნიორებისთვისაა.",
    },
    "admin_required": {
        "en": "Only administrators can perform this action.",
        "ka": "ეს მოქმედება მხოლოდ ადმინისტრატორებისთვისაა.",
    },
    "penalty_not_found": {
        "en": "Penalty not found.",
        "ka": "ჯარიმა ვერ მოიძებნა.",
    },
    "offense_not_found": {
        "en": "Penalty record not found.",
        "ka": "ჯარიმის ჩანაწერი ვერ მოიძებნა.",
    },
    "no_active_suspension": {
        "en": "You have no active suspension.",
        "ka": "თქვენ არ გაქვთ აქტიური შეზღუდვა.",
    },
    "suspension_not_liftable": {
        "en": "This suspension cannot be lifted with points.",
        "ka": "ამ შეზღუდვის მოხსნა ქულებით შეუძლებელია.",
    },
    "penalty_lifted": {
        "en": "Suspension lifted. {points_spent} points spent.",
        "ka": "შეზღუდვა მოიხსნა. დახარჯული {points_spent} ქულა.",
    },
    "forgiveness_message_required": {
        "en": "Please explain what happened.",
        "ka": "გთხოვთ, აღწეროთ რა მოხდა.",
    },
    "forgiveness_no_offense": {
        "en": "There is no penalty to appeal.",
        "ka": "გასაჩივრებელი ჯარიმა არ არსებობს.",
    },
    "forgiveness_already_pending": {
        "en": "A forgiveness request is already pending.",
        "ka": "პატიების მოთხოვნა უკვე განხილვაშია.",
    },
    "forgiveness_window_closed": {
        "en": "The time to request forgiveness has passed.",
        "ka": "პატიების მოთხოვნის დრო ამოიწურა.",
    },
    "forgiveness_already_resolved": {
        "en": "This penalty was already reviewed.",
        "ka": "ეს ჯარიმა უკვე განხილულია.",
    },
    "forgiveness_request_not_found": {
        "en": "Forgiveness request not found.",
        "ka": "პატიების მოთხოვნა ვერ მოიძებნა.",
    },
    "forgiveness_not_partner": {
        "en": "Only the affected partner can answer this request.",
        "ka": "ამ მოთხოვნაზე პასუხი მხოლოდ შესაბამის პარტნიორს შეუძლია.",
    },
    "forgiveness_deadline_passed": {
        "en": "The response deadline passed and the request was declined automatically.",
        "ka": "პასუხის ვადა ამოიწურა და მოთხოვნა ავტომატურად უარყოფილია.",
    },
    "achievement_not_unlocked": {
        "en": "Achievement not unlocked yet.",
        "ka": "მიღწევა ჯერ არ არის გახსნილი.",
    },
    "achievement_already_claimed": {
        "en": "Reward already claimed.",
        "ka": "ჯილდო უკვე აღებულია.",
    },
    "slot_limit_reached": {
        "en": "You already have the maximum of {limit} slots.",
        "ka": "თქვენ უკვე გაქვთ მაქსიმალური {limit} სლოტი.",
    },
    "referral_code_invalid": {
        "en": "Referral code not found.",
        "ka": "მოწვევის კოდი ვერ მოიძებნა.",
    },
    "referral_self": {
        "en": "You cannot use your own referral code.",
        "ka": "საკუთარი მოწვევის კოდის გამოყენება შეუძლებელია.",
    },
    "referral_already_applied": {
        "en": "A referral code was already applied to this account.",
        "ka": "ამ ანგარიშზე მოწვევის კოდი უკვე გამოყენებულია.",
    },
    "cooldown_lifted": {
        "en": "Cooldown lifted! {points_spent} points spent.",
        "ka": "შეზღუდვა წარმატებით მოიხსნა! დახარჯული {points_spent} ქულა.",
    },
    "cooldown_already_lifted": {
        "en": "You already lifted the cooldown today.",
        "ka": "თქვენ უკვე მოხსენით შეზღუდვა დღეს.",
    },
    "cooldown_not_needed": {
        "en": "You are not in a cooldown.",
        "ka": "არ გჭირდებათ შეზღუდვის მოხსნა.",
    },
    "internal_error": {
        "en": "Something went wrong. Please try again.",
        "ka": "დაფიქსირდა შეცდომა. გთხოვთ, სცადოთ თავიდან.",
    },
}


def resolve_locale(accept_language: str | None) -> str:
    """Pick the first supported language tag from an ``Accept-Language`` header."""

    if accept_language:
        for part in accept_language.split(","):
            tag = part.split(";", 1)[0].strip().lower()
            primary = tag.split("-", 1)[0]
            if primary in SUPPORTED_LOCALES:
                return primary
    return settings.default_locale


def render_message(key: str, locale: str | None = None, **params: Any) -> str:
    variants = MESSAGES.get(key)
    if variants is None:
        return key
    template = variants.get(locale or settings.default_locale) or variants["en"]
    try:
        return template.format(**params)
    except KeyError:
        return template


__all__ = ["MESSAGES", "SUPPORTED_LOCALES", "render_message", "resolve_locale"]
