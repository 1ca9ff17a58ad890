from django.contrib import admin, messages

from .models import ContestResult, ProblemStats, Student, SyncLease
from .services.sync import AccountSyncWorker

admin.site.site_header = "Codeforces Tracker Administration"
admin.site.site_title = "Codeforces Tracker Admin"
admin.site.index_title = "Administration"


class ContestResultInline(admin.TabularInline):
    model = ContestResult
    extra = 0
    can_delete = False
    fields = ('date', 'contest_name', 'rank', 'old_rating', 'new_rating', 'rating_change')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = (
        'name',
        'email',
        'handle_codeforces',
        'rating_current',
        'rating_max',
        'last_synced_at',
        'reminder_count',
        'reminder_disabled',
    )
    list_filter = ('reminder_disabled',)
    search_fields = ('name', 'email', 'handle_codeforces')
    readonly_fields = (
        'rating_current',
        'rating_max',
        'rank',
        'avatar',
        'title_photo',
        'last_synced_at',
        'reminder_count',
        'created_at',
        'updated_at',
    )
    inlines = [ContestResultInline]
    actions = ['disable_reminders', 'enable_reminders', 'sync_now']

    @admin.action(description="Disable inactivity reminders")
    def disable_reminders(self, request, queryset):
        updated = queryset.update(reminder_disabled=True)
        self.message_user(request, f"Reminders disabled for {updated} students.", level=messages.SUCCESS)

    @admin.action(description="Enable inactivity reminders")
    def enable_reminders(self, request, queryset):
        updated = queryset.update(reminder_disabled=False)
        self.message_user(request, f"Reminders enabled for {updated} students.", level=messages.SUCCESS)

    @admin.action(description="Sync selected students now")
    def sync_now(self, request, queryset):
        worker = AccountSyncWorker()
        outcomes = [worker.sync(student) for student in queryset]
        failed = [o for o in outcomes if o.status == "failed"]
        ok = sum(1 for o in outcomes if o.status == "ok")
        self.message_user(request, f"Synced {ok} students, {len(failed)} failed.", level=messages.SUCCESS)
        for outcome in failed:
            self.message_user(
                request,
                f"{outcome.handle}: {outcome.error}",
                level=messages.WARNING,
            )


@admin.register(ProblemStats)
class ProblemStatsAdmin(admin.ModelAdmin):
    list_display = ('student', 'total_solved', 'updated_at')
    search_fields = ('student__name', 'student__handle_codeforces')
    readonly_fields = ('student', 'history', 'buckets', 'total_solved', 'updated_at')


@admin.register(SyncLease)
class SyncLeaseAdmin(admin.ModelAdmin):
    list_display = ('name', 'owner', 'acquired_at', 'expires_at')
    actions = ['force_release']

    @admin.action(description="Force release (only if the holder is gone)")
    def force_release(self, request, queryset):
        updated = queryset.update(owner='', expires_at=None)
        self.message_user(request, f"Released {updated} leases.", level=messages.WARNING)
