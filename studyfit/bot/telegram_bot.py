"""
StudyFit — Telegram Bot.

Telegram is the user interface: signing in, editing the weekly plan,
running today's routines and answering the post-run check-in all happen
in chat. A chat's sign-in is its auth state; /start signs in, /signout
signs out.

Unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)
from telegram.helpers import escape_markdown

from studyfit.config import settings
from studyfit.core.formatting import format_clock, format_summary
from studyfit.core.library import resolve_steps, resolve_title
from studyfit.core.plan_store import sorted_day
from studyfit.core.run_engine import Phase, RunState
from studyfit.core.run_queue import pack_steps, parse_packed_steps
from studyfit.data.models import DAY_KEYS, Checkin, RoutineTemplate, format_hhmm, parse_hhmm

if TYPE_CHECKING:
    from studyfit.core.run_engine import RunSession
    from studyfit.core.session import SessionManager, UserSession

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def _is_allowed(user_id: int | None) -> bool:
    if user_id is None:
        return False
    return not settings.ALLOWED_USER_IDS or user_id in settings.ALLOWED_USER_IDS


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores updates from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or not _is_allowed(user.id):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


def _sessions(context: ContextTypes.DEFAULT_TYPE) -> SessionManager:
    return context.bot_data["sessions"]


async def _signed_in(update: Update, context: ContextTypes.DEFAULT_TYPE) -> UserSession | None:
    """The chat's session, or None after telling the user to /start."""
    session = _sessions(context).get(update.effective_chat.id)
    if session is None:
        await update.effective_message.reply_text("You're signed out. Send /start to sign in.")
    return session


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _md(text: str) -> str:
    """Escape user text for parse_mode="Markdown" replies."""
    return escape_markdown(text, version=1)


def _day_label(day_key: str) -> str:
    return day_key.capitalize()


def _parse_day(text: str) -> str | None:
    key = text.strip().lower()[:3]
    return key if key in DAY_KEYS else None


def _format_day(session: UserSession, day_key: str) -> str:
    items = sorted_day(session.plan, day_key)
    if not items:
        return f"*{_day_label(day_key)}*: nothing planned."
    lines = [f"*{_day_label(day_key)}*"]
    for item in items:
        minutes = sum(s.duration_minutes for s in resolve_steps(item, session.library))
        when = item.start_at or "unscheduled"
        sets = f" ×{item.set_count}" if item.set_count > 1 else ""
        lines.append(
            f"• {when}  {_md(resolve_title(item, session.library))}{sets} "
            f"({minutes * item.set_count} min) `{item.plan_id}`"
        )
    return "\n".join(lines)


def _checkin_markup(draft: dict) -> InlineKeyboardMarkup:
    def _scale(kind: str, current: int) -> list[InlineKeyboardButton]:
        return [
            InlineKeyboardButton(
                f"[{n}]" if n == current else str(n), callback_data=f"checkin:{kind}:{n}",
            )
            for n in range(1, 6)
        ]

    goal = "✅ Goal achieved" if draft["goal"] else "⬜ Goal achieved"
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("Mood", callback_data="checkin:noop")] + _scale("mood", draft["mood"]),
        [InlineKeyboardButton("Focus", callback_data="checkin:noop")] + _scale("focus", draft["focus"]),
        [InlineKeyboardButton(goal, callback_data="checkin:goal")],
        [
            InlineKeyboardButton("Save & next", callback_data="checkin:next"),
            InlineKeyboardButton("Save & exit", callback_data="checkin:exit"),
        ],
    ])


def _run_card(state: RunState, checkin_draft: dict | None = None) -> tuple[str, InlineKeyboardMarkup | None]:
    """Message text and buttons for the current run phase."""
    item = state.current

    if state.phase is Phase.READY:
        text = f"▶️ *{_md(item.title)}*\n"
        if item.content:
            text += f"{_md(item.content)}\n"
        text += (
            f"{len(item.steps)} steps × {item.set_count} set(s), "
            f"{item.duration_minutes} min total"
        )
        markup = InlineKeyboardMarkup([[
            InlineKeyboardButton("Start", callback_data="run:start"),
            InlineKeyboardButton("Close", callback_data="run:close"),
        ]])
        return text, markup

    if state.phase in (Phase.RUNNING, Phase.PAUSED):
        step = state.current_step
        status = "⏸ Paused" if state.phase is Phase.PAUSED else "⏱ Running"
        text = (
            f"*{_md(item.title)}*  set {state.set_index + 1}/{item.set_count}, "
            f"step {state.step_index + 1}/{len(item.steps)}\n"
            f"{_md(step.label)}\n"
            f"{status}: {format_clock(state.remaining_seconds)} left"
        )
        toggle = "Resume" if state.phase is Phase.PAUSED else "Pause"
        markup = InlineKeyboardMarkup([
            [
                InlineKeyboardButton(toggle, callback_data="run:toggle"),
                InlineKeyboardButton("Next", callback_data="run:next"),
            ],
            [InlineKeyboardButton("Save draft & exit", callback_data="run:draft")],
        ])
        return text, markup

    if state.phase is Phase.CHECKING_IN:
        draft = checkin_draft or {"mood": 3, "focus": 3, "goal": False}
        text = (
            f"✅ *{_md(item.title)}* finished in {format_summary(state.final_elapsed_seconds or 0)}.\n"
            "How did it go?"
        )
        return text, _checkin_markup(draft)

    return "Run closed.", None


def _transition_sender(bot: Bot, chat_id: int, chat_data: dict) -> Callable[[RunState], Coroutine[Any, Any, None]]:
    """Post a fresh run card on every phase/step change."""

    async def _on_transition(state: RunState) -> None:
        if state.phase in (Phase.LISTING, Phase.EXITED):
            return
        if state.phase is Phase.CHECKING_IN:
            chat_data["checkin"] = {"mood": 3, "focus": 3, "goal": False}
        text, markup = _run_card(state, chat_data.get("checkin"))
        try:
            await bot.send_message(
                chat_id=chat_id, text=text, reply_markup=markup, parse_mode="Markdown",
            )
        except TelegramError as exc:
            logger.warning("Failed to post run card to chat %d: %s", chat_id, exc)

    return _on_transition


# ---------------------------------------------------------------------------
# Auth commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — sign in and sync reminders."""
    chat_id = update.effective_chat.id
    try:
        session = await _sessions(context).on_auth_changed(chat_id, str(update.effective_user.id))
    except Exception as exc:
        logger.error("/start error: %s", exc)
        await update.message.reply_text("Sorry, I couldn't sign you in. Please try again.")
        return

    lines = [
        "Welcome to *StudyFit*!\n",
        "• /today — today's routines, tap one to run it",
        "• /plan [day] — view the weekly plan",
        "• /routines — browse routine templates",
        "Type /help for the full command list.",
    ]
    sync = session.last_sync
    if not _sessions(context).reminders_enabled(session.user_id):
        lines.append("\n🔕 Reminders are off. /reminders on to turn them back on.")
    elif sync is not None and not sync.permitted:
        lines.append("\n⚠️ Reminders are not available for this chat.")
    elif sync is not None:
        lines.append(f"\n🔔 {sync.scheduled} reminder(s) scheduled.")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/today — Today's routines (by logical day)\n"
        "/run [n] — Open routine n of today's list\n"
        "/quick <title> <step,min|step,min> [sets] — Run a one-off routine\n"
        "/status — Show the active run\n"
        "/history — Recent runs and today's check-ins\n"
        "/plan [day] — Show a day of the weekly plan\n"
        "/routines [search] — Browse routine templates\n"
        "/newroutine <id> <title> <step,min|step,min> — Save your own routine\n"
        "/add <day> <routine_id> [HH:MM] [sets] — Add a routine to a day\n"
        "/remove <day> <plan_id> — Remove a plan item\n"
        "/time <plan_id> <HH:MM|off> — Set or clear a start time\n"
        "/copy <from_day> <to_day> — Copy a day's routines\n"
        "/steps <plan_id> [step,min|step,min] — Show or replace an item's steps\n"
        "/reminders [on|off] — Reminder status, or turn them on/off\n"
        "/offset [HH:MM|reset] — When your day starts (default 04:00)\n"
        "/signout — Sign out of this chat\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_signout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /signout — tear down the active run and forget in-memory state."""
    await _sessions(context).on_auth_changed(update.effective_chat.id, None)
    context.chat_data.pop("checkin", None)
    await update.message.reply_text("Signed out. Your plan stays saved; /start to sign back in.")


# ---------------------------------------------------------------------------
# Plan commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_routines(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /routines [query|#tag] — list routine templates."""
    session = await _signed_in(update, context)
    if session is None:
        return

    query = " ".join(context.args or [])
    tag = query if query.startswith("#") else ""
    routines = session.library.search(query="" if tag else query, tag=tag)
    if not routines:
        await update.message.reply_text("No routines match.")
        return

    lines = ["*Routines:*\n"]
    for r in routines:
        tags = _md(" ".join(sorted(r.tags)))
        lines.append(f"`{r.id}` — {_md(r.title)} ({r.minutes_per_set} min) {tags}".rstrip())
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_plan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /plan [day|week] — show the weekly plan."""
    session = await _signed_in(update, context)
    if session is None:
        return

    arg = (context.args or [""])[0]
    if arg.lower() == "week":
        days = list(DAY_KEYS)
    elif arg:
        day = _parse_day(arg)
        if day is None:
            await update.message.reply_text("Unknown day. Use mon, tue, wed, thu, fri, sat or sun.")
            return
        days = [day]
    else:
        days = [_sessions(context).today_key(update.effective_chat.id)]

    text = "\n\n".join(_format_day(session, d) for d in days)
    await update.message.reply_text(text, parse_mode="Markdown")


@authorized_only
async def cmd_add(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /add <day> <routine_id> [HH:MM] [sets]."""
    session = await _signed_in(update, context)
    if session is None:
        return

    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text("Usage: /add <day> <routine_id> [HH:MM] [sets]")
        return
    day = _parse_day(args[0])
    if day is None:
        await update.message.reply_text("Unknown day. Use mon, tue, wed, thu, fri, sat or sun.")
        return
    routine_id = args[1]
    if routine_id not in session.library:
        await update.message.reply_text("Unknown routine. Use /routines to see ids.")
        return

    start_at = None
    set_count = 1
    for extra in args[2:]:
        if parse_hhmm(extra) is not None:
            start_at = extra
        elif extra.isdigit() and int(extra) > 0:
            set_count = int(extra)
        else:
            await update.message.reply_text(f"Couldn't understand '{extra}'. Use HH:MM or a set count.")
            return

    try:
        item = await _sessions(context).add_item(
            update.effective_chat.id, day, routine_id, start_at=start_at, set_count=set_count,
        )
    except Exception as exc:
        logger.error("/add error: %s", exc)
        await update.message.reply_text("Couldn't add the routine. Please try again.")
        return

    when = f" at {item.start_at}" if item.start_at else ""
    await update.message.reply_text(
        f"✅ Added *{_md(item.title_override or routine_id)}* to {_day_label(day)}{when}.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_remove(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /remove <day> <plan_id>."""
    session = await _signed_in(update, context)
    if session is None:
        return

    args = context.args or []
    day = _parse_day(args[0]) if args else None
    if len(args) < 2 or day is None:
        await update.message.reply_text("Usage: /remove <day> <plan_id>")
        return

    try:
        removed = await _sessions(context).remove_item(update.effective_chat.id, day, args[1])
    except Exception as exc:
        logger.error("/remove error: %s", exc)
        await update.message.reply_text("Couldn't remove the item. Please try again.")
        return

    if removed:
        await update.message.reply_text("✅ Removed.")
    else:
        await update.message.reply_text(f"No item {args[1]} on {_day_label(day)}.")


@authorized_only
async def cmd_time(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /time <plan_id> <HH:MM|off>."""
    session = await _signed_in(update, context)
    if session is None:
        return

    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text("Usage: /time <plan_id> <HH:MM|off>")
        return
    plan_id, value = args[0], args[1]
    if value.lower() == "off":
        start_at = None
    elif parse_hhmm(value) is not None:
        start_at = value
    else:
        await update.message.reply_text("Invalid time. Use HH:MM (24h), e.g. 07:30.")
        return

    try:
        item = await _sessions(context).set_start_time(update.effective_chat.id, plan_id, start_at)
    except KeyError:
        await update.message.reply_text(f"No plan item {plan_id}.")
        return
    except Exception as exc:
        logger.error("/time error: %s", exc)
        await update.message.reply_text("Couldn't update the time. Please try again.")
        return

    if item.start_at:
        await update.message.reply_text(f"⏰ Start time set to {item.start_at}.")
    else:
        await update.message.reply_text("Start time cleared; no reminder for this item.")


@authorized_only
async def cmd_copy(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /copy <from_day> <to_day>."""
    session = await _signed_in(update, context)
    if session is None:
        return

    args = context.args or []
    days = [_parse_day(a) for a in args[:2]]
    if len(days) < 2 or None in days:
        await update.message.reply_text("Usage: /copy <from_day> <to_day>")
        return

    try:
        copies = await _sessions(context).copy_day(update.effective_chat.id, days[0], days[1])
    except Exception as exc:
        logger.error("/copy error: %s", exc)
        await update.message.reply_text("Couldn't copy the day. Please try again.")
        return
    await update.message.reply_text(
        f"✅ Copied {len(copies)} routine(s) from {_day_label(days[0])} to {_day_label(days[1])}."
    )


@authorized_only
async def cmd_steps(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /steps <plan_id> [label,min|label,min] — show or replace an item's steps."""
    session = await _signed_in(update, context)
    if session is None:
        return

    args = context.args or []
    if not args:
        await update.message.reply_text("Usage: /steps <plan_id> [label,min|label,min]")
        return
    plan_id = args[0]
    found = session.plan.find(plan_id)
    if found is None:
        await update.message.reply_text(f"No plan item {plan_id}.")
        return

    if len(args) == 1:
        _, item = found
        packed = pack_steps(resolve_steps(item, session.library))
        await update.message.reply_text(
            f"{resolve_title(item, session.library)}: {packed or 'no steps'}"
        )
        return

    steps = parse_packed_steps(" ".join(args[1:]))
    if not steps:
        await update.message.reply_text("No steps found. Example: /steps <plan_id> Memorize,20|Quiz,5")
        return
    try:
        item = await _sessions(context).edit_steps(update.effective_chat.id, plan_id, steps)
    except Exception as exc:
        logger.error("/steps error: %s", exc)
        await update.message.reply_text("Couldn't update the steps. Please try again.")
        return
    await update.message.reply_text(f"✅ Steps updated: {pack_steps(item.steps_override or [])}")


@authorized_only
async def cmd_newroutine(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /newroutine <id> <title> <label,min|label,min> — save an own routine."""
    session = await _signed_in(update, context)
    if session is None:
        return

    args = context.args or []
    if len(args) < 3:
        await update.message.reply_text("Usage: /newroutine <id> <title> <label,min|label,min>")
        return
    steps = parse_packed_steps(args[-1])
    if not steps:
        await update.message.reply_text("No steps found. Example: /newroutine words Word drill Memorize,20|Quiz,5")
        return
    routine = RoutineTemplate(id=args[0], title=" ".join(args[1:-1]), steps=tuple(steps))

    try:
        await _sessions(context).save_routine(update.effective_chat.id, routine)
    except Exception as exc:
        logger.error("/newroutine error: %s", exc)
        await update.message.reply_text("Couldn't save the routine. Please try again.")
        return
    await update.message.reply_text(
        f"✅ Routine {routine.id} saved ({routine.minutes_per_set} min per set). "
        f"Add it with /add <day> {routine.id}"
    )


# ---------------------------------------------------------------------------
# Settings commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminders [on|off] — status, re-sync or cancel all."""
    session = await _signed_in(update, context)
    if session is None:
        return

    sessions = _sessions(context)
    chat_id = update.effective_chat.id
    arg = (context.args or [""])[0].lower()

    try:
        if arg == "off":
            cancelled = await sessions.disable_reminders(chat_id)
            await update.message.reply_text(f"🔕 {cancelled} reminder(s) cancelled.")
            return
        if arg == "on":
            result = await sessions.enable_reminders(chat_id)
            if result is None or not result.permitted:
                await update.message.reply_text("⚠️ Reminders are not available for this chat.")
            else:
                msg = f"🔔 {result.scheduled} reminder(s) scheduled."
                if result.failed:
                    msg += f" {result.failed} failed; try /reminders on again."
                await update.message.reply_text(msg)
            return
    except Exception as exc:
        logger.error("/reminders error: %s", exc)
        await update.message.reply_text("Couldn't update reminders. Please try again.")
        return

    if session.scheduler is None:
        await update.message.reply_text("Reminders are not available for this chat.")
        return
    if not sessions.reminders_enabled(session.user_id):
        await update.message.reply_text("🔕 Reminders are off. /reminders on to turn them back on.")
        return
    statuses = session.scheduler.diagnostics(session.plan, session.library, sessions.now())
    if not statuses:
        await update.message.reply_text("No reminders: give a plan item a start time with /time.")
        return
    lines = ["*Reminders:*\n"]
    for st in sorted(statuses, key=lambda s: s.next_fire):
        mark = "✓" if st.passed_this_week else "·"
        lines.append(
            f"{mark} {_day_label(DAY_KEYS[st.spec.weekday - 1])} "
            f"{format_hhmm(st.spec.hour, st.spec.minute)}  {_md(st.spec.content.title)} "
            f"(next {st.next_fire:%a %d %b %H:%M})"
        )
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_offset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /offset [HH:MM|reset] — show, set or reset when the logical day starts."""
    session = await _signed_in(update, context)
    if session is None:
        return

    sessions = _sessions(context)
    if not context.args:
        minutes = sessions.day_offset(session.user_id)
        await update.message.reply_text(
            f"Your day starts at {format_hhmm(minutes // 60, minutes % 60)}."
        )
        return

    if context.args[0].lower() == "reset":
        minutes = sessions.reset_day_offset(update.effective_chat.id)
        await update.message.reply_text(
            f"✅ Back to the default: your day starts at {format_hhmm(minutes // 60, minutes % 60)}."
        )
        return

    parsed = parse_hhmm(context.args[0])
    if parsed is None:
        await update.message.reply_text("Invalid time. Use HH:MM, e.g. 04:00.")
        return
    sessions.set_day_offset(update.effective_chat.id, parsed[0] * 60 + parsed[1])
    await update.message.reply_text(f"✅ Your day now starts at {format_hhmm(*parsed)}.")


# ---------------------------------------------------------------------------
# Run commands
# ---------------------------------------------------------------------------


def _busy(run: RunSession | None) -> bool:
    return run is not None and run.phase in (Phase.RUNNING, Phase.PAUSED, Phase.CHECKING_IN)


async def _open_run(update: Update, context: ContextTypes.DEFAULT_TYPE) -> RunSession | None:
    """Open a run over today's queue, unless one is already in progress."""
    sessions = _sessions(context)
    chat_id = update.effective_chat.id
    current = sessions.active_run(chat_id)
    if _busy(current):
        text, markup = _run_card(current.state, context.chat_data.get("checkin"))
        await update.effective_message.reply_text(
            "A routine is in progress. Finish it or save a draft first.\n\n" + text,
            reply_markup=markup, parse_mode="Markdown",
        )
        return None
    return await sessions.start_run(
        chat_id,
        on_transition=_transition_sender(context.bot, chat_id, context.chat_data),
    )


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — list today's queue with a button per routine."""
    session = await _signed_in(update, context)
    if session is None:
        return

    try:
        run = await _open_run(update, context)
    except Exception as exc:
        logger.error("/today error: %s", exc)
        await update.message.reply_text("Couldn't build today's list. Please try again.")
        return
    if run is None:
        return

    queue = run.state.queue
    if not queue:
        await update.message.reply_text("Nothing planned for today. Add routines with /add.")
        return

    day = _sessions(context).today_key(update.effective_chat.id)
    lines = [f"*Today ({_day_label(day)}):*\n"]
    for i, item in enumerate(queue, start=1):
        lines.append(f"{i}. {item.time_label}  {_md(item.title)} ({item.duration_minutes} min)")
    keyboard = [
        [InlineKeyboardButton(f"{i}. {item.title}", callback_data=f"run:select:{i - 1}")]
        for i, item in enumerate(queue, start=1)
    ]
    await update.message.reply_text(
        "\n".join(lines), reply_markup=InlineKeyboardMarkup(keyboard), parse_mode="Markdown",
    )


@authorized_only
async def cmd_run(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /run [n] — open routine n (default 1) of today's queue."""
    session = await _signed_in(update, context)
    if session is None:
        return

    try:
        index = int(context.args[0]) - 1 if context.args else 0
    except ValueError:
        await update.message.reply_text("Usage: /run [number from /today]")
        return

    run = await _open_run(update, context)
    if run is None:
        return
    if not 0 <= index < len(run.state.queue):
        await update.message.reply_text("No such routine today. See /today.")
        return
    run.select(index)


@authorized_only
async def cmd_quick(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /quick <title> <step,min|step,min> [sets] — one-off run."""
    session = await _signed_in(update, context)
    if session is None:
        return

    args = context.args or []
    set_count = 1
    if len(args) >= 3 and args[-1].isdigit():
        set_count = max(1, int(args.pop()))
    if len(args) < 2:
        await update.message.reply_text("Usage: /quick <title> <step,min|step,min> [sets]")
        return
    title, packed = " ".join(args[:-1]), args[-1]

    sessions = _sessions(context)
    chat_id = update.effective_chat.id
    if _busy(sessions.active_run(chat_id)):
        await update.message.reply_text("A routine is in progress. Finish it or save a draft first.")
        return
    try:
        run = await sessions.start_adhoc_run(
            chat_id, title, packed, set_count,
            on_transition=_transition_sender(context.bot, chat_id, context.chat_data),
        )
    except ValueError:
        await update.message.reply_text("No steps found. Example: /quick Words Memorize,20|Quiz,5")
        return
    run.select(0)


@authorized_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status — show the active run card with the live countdown."""
    run = _sessions(context).active_run(update.effective_chat.id)
    if run is None or run.phase is Phase.LISTING:
        await update.message.reply_text("No routine in progress. See /today.")
        return
    text, markup = _run_card(run.state, context.chat_data.get("checkin"))
    await update.message.reply_text(text, reply_markup=markup, parse_mode="Markdown")


@authorized_only
async def cmd_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /history — recent run records and today's check-ins."""
    session = await _signed_in(update, context)
    if session is None:
        return

    records, notes = _sessions(context).history(update.effective_chat.id)
    if not records and not notes:
        await update.message.reply_text("No runs recorded yet. Start one with /today.")
        return

    lines = ["Recent runs:"]
    for r in reversed(records):
        mark = "📝" if r.status == "draft" else "✅"
        when = r.completed_at[:16].replace("T", " ")
        checkin = f", mood {r.mood}, focus {r.focus}" if r.mood is not None else ""
        lines.append(f"{mark} {when}  {r.title}, {format_summary(r.elapsed_seconds)}{checkin}")
    if notes:
        lines.append("\nToday's check-ins:")
        for n in notes:
            goal = ", goal achieved" if n.goal_achieved else ""
            lines.append(f"• {n.routine_title}: mood {n.mood}, focus {n.focus}{goal}")
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# Inline button callbacks
# ---------------------------------------------------------------------------


async def _handle_run_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle run control buttons: select, start, pause/resume, next, draft, close."""
    query = update.callback_query
    await query.answer()

    if not _is_allowed(query.from_user.id if query.from_user else None):
        return

    sessions = _sessions(context)
    chat_id = update.effective_chat.id
    run = sessions.active_run(chat_id)
    if run is None:
        await query.edit_message_text("This run has ended. See /today.")
        return

    action = query.data.split(":")
    try:
        if action[1] == "select":
            if run.phase is not Phase.LISTING and run.phase is not Phase.READY:
                await query.edit_message_text("A routine is in progress. See /status.")
                return
            run.select(int(action[2]))
        elif action[1] == "start":
            run.start()
        elif action[1] == "toggle":
            run.toggle_pause()
        elif action[1] == "next":
            run.skip()
        elif action[1] == "draft":
            record = await run.save_draft_and_exit()
            if record is not None:
                await query.edit_message_text(
                    f"📝 Draft saved: {record.title}, {format_summary(record.elapsed_seconds)}."
                )
        elif action[1] == "close":
            await run.close()
            await query.edit_message_text("Run closed.")
    except Exception as exc:
        logger.error("run callback error: %s", exc)
        await query.edit_message_text("Something went wrong. Please try again.")


async def _handle_checkin_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the check-in keyboard: mood/focus scales, goal toggle, confirm."""
    query = update.callback_query
    await query.answer()

    if not _is_allowed(query.from_user.id if query.from_user else None):
        return

    run = _sessions(context).active_run(update.effective_chat.id)
    if run is None or run.phase is not Phase.CHECKING_IN:
        await query.edit_message_text("Nothing to check in.")
        return

    draft = context.chat_data.setdefault("checkin", {"mood": 3, "focus": 3, "goal": False})
    action = query.data.split(":")

    if action[1] == "noop":
        return
    if action[1] in ("mood", "focus"):
        draft[action[1]] = int(action[2])
    elif action[1] == "goal":
        draft["goal"] = not draft["goal"]

    if action[1] in ("mood", "focus", "goal"):
        await query.edit_message_reply_markup(reply_markup=_checkin_markup(draft))
        return

    try:
        checkin = Checkin(mood=draft["mood"], focus=draft["focus"], goal_achieved=draft["goal"])
        record = await run.confirm_checkin(checkin, proceed=action[1] == "next")
    except Exception as exc:
        logger.error("checkin callback error: %s", exc)
        await query.edit_message_text("Couldn't save your check-in. Please try again.")
        return

    context.chat_data.pop("checkin", None)
    if record is None:
        return
    msg = f"✅ Saved: {record.title}, {format_summary(record.elapsed_seconds)}."
    if run.phase is Phase.EXITED:
        msg += "\nThat's all for now. Great work!"
    await query.edit_message_text(msg)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    sessions: SessionManager | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        sessions: Session manager. Defaults to one wired to the SQLite cache
                  and recorder, the remote store when REMOTE_STORE_URL is set,
                  and JobQueue reminders.
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_on_startup)
        .post_shutdown(_on_shutdown)
        .build()
    )

    if sessions is None:
        sessions = _default_sessions(app)
    app.bot_data["sessions"] = sessions

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("signout", cmd_signout))
    app.add_handler(CommandHandler("routines", cmd_routines))
    app.add_handler(CommandHandler("newroutine", cmd_newroutine))
    app.add_handler(CommandHandler("plan", cmd_plan))
    app.add_handler(CommandHandler("add", cmd_add))
    app.add_handler(CommandHandler("remove", cmd_remove))
    app.add_handler(CommandHandler("time", cmd_time))
    app.add_handler(CommandHandler("copy", cmd_copy))
    app.add_handler(CommandHandler("steps", cmd_steps))
    app.add_handler(CommandHandler("reminders", cmd_reminders))
    app.add_handler(CommandHandler("offset", cmd_offset))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("run", cmd_run))
    app.add_handler(CommandHandler("quick", cmd_quick))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("history", cmd_history))
    app.add_handler(CallbackQueryHandler(_handle_run_callback, pattern=r"^run:"))
    app.add_handler(CallbackQueryHandler(_handle_checkin_callback, pattern=r"^checkin:"))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _default_sessions(app: Application) -> SessionManager:
    from studyfit.adapters.telegram_notifier import TelegramNotifier
    from studyfit.adapters.telegram_reminders import TelegramReminders
    from studyfit.core.plan_store import PlanStore
    from studyfit.core.session import SessionManager
    from studyfit.data.db import CacheDB, RecordDB

    remote = None
    if settings.REMOTE_STORE_URL:
        from studyfit.adapters.http_document_store import HttpDocumentStore
        remote = HttpDocumentStore(
            settings.REMOTE_STORE_URL,
            settings.REMOTE_STORE_TOKEN,
            settings.REMOTE_POLL_SECONDS,
        )
        logger.info("Remote plan store: %s", settings.REMOTE_STORE_URL)
    else:
        logger.info("No REMOTE_STORE_URL set, plans are kept in the local cache only")

    cache = CacheDB()
    notifier = TelegramNotifier(app.bot)

    def _reminders_for(chat_id: int) -> TelegramReminders:
        return TelegramReminders(app.job_queue, notifier, chat_id, settings.ALLOWED_USER_IDS)

    return SessionManager(PlanStore(cache, remote), cache, RecordDB(), _reminders_for)


async def _on_startup(app: Application) -> None:
    """Sign remembered chats back in so their reminder jobs exist again."""
    sessions: SessionManager | None = app.bot_data.get("sessions")
    if sessions is None:
        return
    restored = await sessions.restore_sessions()
    logger.info("Restored %d signed-in chat(s) and their reminders", restored)


async def _on_shutdown(app: Application) -> None:
    sessions: SessionManager | None = app.bot_data.get("sessions")
    if sessions is not None:
        await sessions.shutdown()


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting StudyFit bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
