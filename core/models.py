from django.db import models


class Student(models.Model):
    name = models.CharField(max_length=150)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=30, blank=True, default='')

    # Handle
    handle_codeforces = models.CharField(max_length=100, blank=True, null=True, unique=True)

    # Synced from Codeforces (overwritten on every successful sync)
    rating_current = models.IntegerField(default=0)
    rating_max = models.IntegerField(default=0)
    rank = models.CharField(max_length=50, blank=True, default='')
    avatar = models.URLField(max_length=500, blank=True, default='')
    title_photo = models.URLField(max_length=500, blank=True, default='')
    last_synced_at = models.DateTimeField(null=True, blank=True)

    # Reminder bookkeeping
    reminder_count = models.PositiveIntegerField(default=0)
    reminder_disabled = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = "Student"
        verbose_name_plural = "Students"

    def __str__(self):
        return f"{self.name} ({self.handle_codeforces or 'no handle'})"


class ContestResult(models.Model):
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='contest_results')
    contest_id = models.CharField(max_length=50)
    contest_name = models.CharField(max_length=300, blank=True, default='')
    date = models.DateTimeField()
    rank = models.PositiveIntegerField(null=True, blank=True)
    old_rating = models.IntegerField()
    new_rating = models.IntegerField()
    rating_change = models.IntegerField()
    # Null means "not supplied by the source", which is not the same as zero.
    unsolved_problems = models.IntegerField(null=True, blank=True)

    class Meta:
        ordering = ['date', 'id']
        indexes = [
            models.Index(fields=['student', 'date'], name='core_contestresult_stu_date'),
        ]
        verbose_name = "Contest Result"
        verbose_name_plural = "Contest Results"

    def __str__(self):
        return f"{self.student.name} - {self.contest_name} ({self.rating_change:+d})"


class ProblemStats(models.Model):
    """
    Derived solve statistics. Rewritten wholesale by every successful sync.

    history: [{"date": "YYYY-MM-DD", "solved": n, "avg_rating": r, "most_difficult": {...}}]
    buckets: [{"rating": 1400, "count": n}] ascending by rating
    """

    student = models.OneToOneField(Student, on_delete=models.CASCADE, related_name='problem_stats')
    history = models.JSONField(default=list, blank=True)
    buckets = models.JSONField(default=list, blank=True)
    total_solved = models.IntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Problem Stats"
        verbose_name_plural = "Problem Stats"

    def __str__(self):
        return f"{self.student.name} - {self.total_solved} solved"


class SyncLease(models.Model):
    name = models.CharField(max_length=100, unique=True)
    owner = models.CharField(max_length=64, blank=True, default='')
    acquired_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Sync Lease"
        verbose_name_plural = "Sync Leases"

    def __str__(self):
        if not self.owner:
            return f"{self.name} (free)"
        return f"{self.name} held by {self.owner} until {self.expires_at}"
