from __future__ import annotations

import argparse

from .config import configure_logging, load_config
from .engine import QueueOutcome
from .errors import QueueError
from .models import Ticket
from .runtime import QueueRuntime, build_runtime
from .seed import seed_base
from .staff_auth import StaffAuth


def _line(t: Ticket) -> str:
    patient = t.patient_id or "-"
    return f"{t.id} | {t.display_code} | {t.status.value} | called x{t.called_count} | patient {patient}"


def _print_outcome(outcome: QueueOutcome) -> int:
    if not outcome.ok:
        print(f"ERROR {outcome.error.value}: {outcome.message}")
        return 1
    print(outcome.message)
    if outcome.ticket is not None:
        print(_line(outcome.ticket))
    return 0


def cmd_init(rt: QueueRuntime, args: argparse.Namespace) -> int:
    seed_base(rt.sessions)
    print("DB initialised and seed completed.")
    return 0


def cmd_take(rt: QueueRuntime, args: argparse.Namespace) -> int:
    return _print_outcome(rt.engine.take(args.department_id))


def cmd_ticket_action(rt: QueueRuntime, args: argparse.Namespace) -> int:
    action = getattr(rt.engine, args.action)
    if args.action in ("skip", "cancel"):
        return _print_outcome(action(args.ticket_id, note=args.note))
    if args.action in ("call", "start"):
        return _print_outcome(action(args.ticket_id, staff_id=args.staff_id))
    return _print_outcome(action(args.ticket_id))


def cmd_assign(rt: QueueRuntime, args: argparse.Namespace) -> int:
    return _print_outcome(rt.engine.assign_patient(args.ticket_id, args.patient_id))


def cmd_today(rt: QueueRuntime, args: argparse.Namespace) -> int:
    tickets = rt.engine.today_tickets(args.department_id)
    if not tickets:
        print("No tickets today.")
    for t in tickets:
        print(_line(t))
    return 0


def cmd_display(rt: QueueRuntime, args: argparse.Namespace) -> int:
    board = rt.display.board(args.department_id)
    for b in board.departments:
        serving = b.now_serving or "-"
        print(f"Department {b.department_id} | now serving {serving} | next: {', '.join(b.next_up) or '-'}")
    return 0


def cmd_stats(rt: QueueRuntime, args: argparse.Namespace) -> int:
    st = rt.engine.stats(args.department_id)
    print(f"{st.service_date.isoformat()} | total {st.total}")
    for status, n in st.by_status.items():
        print(f"  {status}: {n}")
    print(f"  avg wait: {st.avg_wait_minutes} min | avg service: {st.avg_service_minutes} min")
    if st.remaining_quota is not None:
        print(f"  remaining quota: {st.remaining_quota}")
    return 0


def cmd_reset(rt: QueueRuntime, args: argparse.Namespace) -> int:
    return _print_outcome(rt.engine.reset(args.department_id))


def cmd_reset_due(rt: QueueRuntime, args: argparse.Namespace) -> int:
    """
    Meant for cron (e.g. every 5 minutes): runs the daily resets whose time
    has come and that did not run yet today.
    """
    run = rt.engine.run_scheduled_resets()
    for department_id, count in run.reset.items():
        print(f"Department {department_id}: {count} tickets reset.")
    for department_id, message in run.failed.items():
        print(f"Department {department_id}: reset failed ({message})")
    if not run.reset and not run.failed:
        print("No reset due.")
    return 1 if run.failed else 0


def cmd_settings(rt: QueueRuntime, args: argparse.Namespace) -> int:
    changes = {
        k: v
        for k, v in {
            "prefix": args.prefix,
            "number_width": args.width,
            "reset_schedule": args.reset_schedule,
            "daily_quota": args.quota,
            "allow_recall_after_skip": args.allow_recall,
            "is_active": args.active,
        }.items()
        if v is not None
    }
    try:
        if args.department_id is None:
            configs = rt.registry.list_all()
        elif changes:
            configs = [rt.registry.update(args.department_id, **changes)]
        else:
            configs = [rt.registry.get(args.department_id)]
    except QueueError as e:
        print(f"ERROR {e.code.value}: {e}")
        return 1

    for c in configs:
        recall = "recall" if c.allow_recall_after_skip else "no recall"
        state = "active" if c.is_active else "inactive"
        print(
            f"{c.department_id} | {c.format_code(1)} | quota {c.daily_quota} | reset {c.reset_schedule} | {recall} | {state}"
        )
    return 0


def cmd_add_user(rt: QueueRuntime, args: argparse.Namespace) -> int:
    auth = StaffAuth(rt.sessions, rt.config.jwt_secret, rt.config.jwt_expire_minutes)
    role = "admin" if args.admin else "staff"
    try:
        uid = auth.register(args.username, args.password, role=role)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1
    print(f"{role.capitalize()} user created: {uid}")
    return 0


def _yes_no(value: str) -> bool:
    if value.lower() in ("yes", "y", "true", "1"):
        return True
    if value.lower() in ("no", "n", "false", "0"):
        return False
    raise argparse.ArgumentTypeError("expected yes/no")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="clinic_queue", description="Clinic queue CLI (front desk, admin, cron)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create the DB and load the seed")
    p_init.set_defaults(func=cmd_init)

    p_take = sub.add_parser("take", help="Take a number for a department")
    p_take.add_argument("department_id", type=int)
    p_take.set_defaults(func=cmd_take)

    for action, help_text in [
        ("call", "Call a ticket (again)"),
        ("start", "Start serving a called ticket"),
        ("complete", "Complete the ticket in progress"),
        ("skip", "Skip a waiting/called ticket"),
        ("cancel", "Cancel a ticket"),
        ("recall", "Put a skipped ticket back in line"),
    ]:
        p_act = sub.add_parser(action, help=help_text)
        p_act.add_argument("ticket_id")
        if action in ("skip", "cancel"):
            p_act.add_argument("--note", default=None)
        if action in ("call", "start"):
            p_act.add_argument("--staff-id", default=None, help="Staff user serving the ticket")
        p_act.set_defaults(func=cmd_ticket_action, action=action)

    p_assign = sub.add_parser("assign", help="Assign a patient to a ticket")
    p_assign.add_argument("ticket_id")
    p_assign.add_argument("patient_id")
    p_assign.set_defaults(func=cmd_assign)

    for name, func, help_text in [
        ("today", cmd_today, "List today's tickets"),
        ("display", cmd_display, "Show the public board"),
        ("stats", cmd_stats, "Today's statistics"),
    ]:
        p_q = sub.add_parser(name, help=help_text)
        p_q.add_argument("--department-id", type=int, default=None)
        p_q.set_defaults(func=func)

    p_reset = sub.add_parser("reset", help="Cancel today's waiting/called tickets of a department")
    p_reset.add_argument("department_id", type=int)
    p_reset.set_defaults(func=cmd_reset)

    p_due = sub.add_parser("reset-due", help="Run the scheduled daily resets that are due (cron)")
    p_due.set_defaults(func=cmd_reset_due)

    p_set = sub.add_parser("settings", help="Show or change queue settings")
    p_set.add_argument("--department-id", type=int, default=None)
    p_set.add_argument("--prefix", default=None)
    p_set.add_argument("--width", type=int, default=None)
    p_set.add_argument("--reset-schedule", default=None, help="'manual' or HH:MM")
    p_set.add_argument("--quota", type=int, default=None)
    p_set.add_argument("--allow-recall", type=_yes_no, default=None)
    p_set.add_argument("--active", type=_yes_no, default=None)
    p_set.set_defaults(func=cmd_settings)

    p_user = sub.add_parser("add-user", help="Create a staff account")
    p_user.add_argument("--username", required=True)
    p_user.add_argument("--password", required=True)
    p_user.add_argument("--admin", action="store_true", help="Can reset queues and edit settings")
    p_user.set_defaults(func=cmd_add_user)

    return p


def main(argv: list[str] | None = None, runtime: QueueRuntime | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    rt = runtime
    if rt is None:
        config = load_config()
        configure_logging(config.log_level)
        rt = build_runtime(config)  # guarantees the tables
    try:
        return args.func(rt, args)
    finally:
        if runtime is None:
            rt.close()


if __name__ == "__main__":
    raise SystemExit(main())
