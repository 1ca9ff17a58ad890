from django.core.management.base import BaseCommand, CommandError

from core.models import Student
from core.services.sync import AccountSyncWorker
from core.services.sync_errors import AlreadyRunning
from core.tasks import run_sync_and_notify


class Command(BaseCommand):
    help = "Sync every student from Codeforces, then send inactivity reminders."

    def add_arguments(self, parser):
        parser.add_argument(
            "--student-id",
            type=int,
            help="Sync only this student (no reminders are sent).",
        )
        parser.add_argument(
            "--skip-notify",
            action="store_true",
            help="Do not send inactivity reminders after the sync.",
        )
        parser.add_argument(
            "--window-days",
            type=int,
            help="Inactivity window in days (default: INACTIVITY_WINDOW_DAYS).",
        )

    def handle(self, *args, **options):
        student_id = options.get("student_id")
        if student_id:
            try:
                student = Student.objects.get(id=student_id)
            except Student.DoesNotExist:
                raise CommandError(f"Student {student_id} not found.")
            outcome = AccountSyncWorker().sync(student)
            style = self.style.SUCCESS if outcome.status != "failed" else self.style.ERROR
            self.stdout.write(style(f"{student.name}: {outcome.status} {outcome.reason}".rstrip()))
            return

        window_days = options.get("window_days")
        if window_days is not None and window_days < 1:
            raise CommandError("--window-days must be a positive integer.")

        try:
            result = run_sync_and_notify(
                window_days,
                notify=not options.get("skip_notify"),
            )
        except AlreadyRunning as exc:
            raise CommandError(str(exc))

        sync = result["sync"]
        self.stdout.write(
            self.style.SUCCESS(
                f"Sync: {sync['succeeded']}/{sync['total']} ok, "
                f"{sync['failed']} failed, {sync['skipped']} skipped."
            )
        )
        for failure in sync["failures"]:
            self.stdout.write(
                self.style.WARNING(
                    f"  student {failure['student_id']} ({failure['handle']}): "
                    f"{failure['error']['kind']} {failure['error']['message']}"
                )
            )
        notify = result["notify"]
        if notify:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Reminders: {notify['sent']} sent, {notify['failed']} failed "
                    f"({notify['selected']} inactive of {notify['considered']})."
                )
            )
