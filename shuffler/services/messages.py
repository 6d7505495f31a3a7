from __future__ import annotations

from typing import Optional

from ..models import Exchange, Participant, Questionnaire


LABELS = {
    "never_buy_myself": "Something I'd never buy myself",
    "please_no": "Please, no",
    "spare_time": "In my spare time",
    "other_loves": "Other things I love",
    "favorite_color": "Favorite color",
    "favorite_sports_team": "Favorite sports team",
    "favorite_pattern": "Favorite pattern",
    "favorite_supplies": "Favorite supplies",
    "favorite_snacks": "Favorite snacks",
    "favorite_beverages": "Favorite beverages",
    "favorite_candy": "Favorite candy",
    "favorite_fragrances": "Favorite fragrances",
    "favorite_restaurant": "Favorite restaurant",
    "favorite_store": "Favorite store",
    "favorite_christmas_movie": "Favorite Christmas movie",
    "favorite_christmas_song": "Favorite Christmas song",
}


def _budget_line(exchange: Exchange) -> Optional[str]:
    lo, hi = exchange.budget_min, exchange.budget_max
    if lo and hi:
        return f"Budget: ${lo} - ${hi}"
    if hi:
        return f"Budget: up to ${hi}"
    if lo:
        return f"Budget: at least ${lo}"
    return None


def assignment_subject(exchange: Exchange) -> str:
    return f"Your Secret Santa assignment for {exchange.title}"


def assignment_text(
    exchange: Exchange,
    santa: Participant,
    questionnaire: Questionnaire,
    organizer_name: Optional[str] = None,
) -> str:
    lines = [
        f"Hi {santa.name or santa.email},",
        "",
        f"You are the Secret Santa for: {questionnaire.name}",
        "",
        f"Exchange: {exchange.title}",
    ]
    if organizer_name:
        lines.append(f"Organized by: {organizer_name}")
    budget = _budget_line(exchange)
    if budget:
        lines.append(budget)
    if exchange.exchange_date:
        lines.append(f"Exchange date: {exchange.exchange_date}")

    answers = questionnaire.answers()
    if answers:
        lines += ["", f"About {questionnaire.name}:"]
        for field, value in answers.items():
            lines.append(f"- {LABELS.get(field, field)}: {value}")

    lines += ["", "Keep it secret!"]
    return "\n".join(lines)


def all_complete_subject(exchange: Exchange) -> str:
    return f"Everyone is in: {exchange.title} is ready to shuffle"


def all_complete_text(exchange: Exchange, participant_count: int, base_url: str, organizer_name: Optional[str] = None) -> str:
    greeting = f"Hi {organizer_name}," if organizer_name else "Hi,"
    return "\n".join([
        greeting,
        "",
        f"All {participant_count} participants in \"{exchange.title}\" have completed their questionnaires.",
        "You can now shuffle and send out assignments:",
        f"{base_url.rstrip('/')}/exchanges/{exchange.id}",
    ])


def invite_subject(exchange: Exchange) -> str:
    return f"You're invited: join the \"{exchange.title}\" Secret Santa"


def invite_text(
    exchange: Exchange,
    participant: Participant,
    questionnaire_url: str,
    organizer_name: Optional[str] = None,
) -> str:
    greeting = f"Hi {participant.name}," if participant.name else "Hi,"
    inviter = f"{organizer_name} has" if organizer_name else "You've been"
    lines = [
        greeting,
        "",
        f"{inviter} invited you to \"{exchange.title}\", a Secret Santa gift exchange.",
        "Please fill out a short questionnaire so your Secret Santa knows what you like:",
        questionnaire_url,
    ]
    budget = _budget_line(exchange)
    if budget or exchange.exchange_date:
        lines.append("")
    if budget:
        lines.append(budget)
    if exchange.exchange_date:
        lines.append(f"Exchange date: {exchange.exchange_date}")
    lines += [
        "",
        "Once everyone has answered, you'll get your Secret Santa assignment by email.",
        "This link is yours alone. Please don't share it.",
    ]
    return "\n".join(lines)
