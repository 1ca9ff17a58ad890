import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Student',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=150)),
                ('email', models.EmailField(max_length=254, unique=True)),
                ('phone', models.CharField(blank=True, default='', max_length=30)),
                ('handle_codeforces', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('rating_current', models.IntegerField(default=0)),
                ('rating_max', models.IntegerField(default=0)),
                ('rank', models.CharField(blank=True, default='', max_length=50)),
                ('avatar', models.URLField(blank=True, default='', max_length=500)),
                ('title_photo', models.URLField(blank=True, default='', max_length=500)),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('reminder_count', models.PositiveIntegerField(default=0)),
                ('reminder_disabled', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Student',
                'verbose_name_plural': 'Students',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='SyncLease',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('owner', models.CharField(blank=True, default='', max_length=64)),
                ('acquired_at', models.DateTimeField(blank=True, null=True)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'verbose_name': 'Sync Lease',
                'verbose_name_plural': 'Sync Leases',
            },
        ),
        migrations.CreateModel(
            name='ProblemStats',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('history', models.JSONField(blank=True, default=list)),
                ('buckets', models.JSONField(blank=True, default=list)),
                ('total_solved', models.IntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='problem_stats', to='core.student')),
            ],
            options={
                'verbose_name': 'Problem Stats',
                'verbose_name_plural': 'Problem Stats',
            },
        ),
        migrations.CreateModel(
            name='ContestResult',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('contest_id', models.CharField(max_length=50)),
                ('contest_name', models.CharField(blank=True, default='', max_length=300)),
                ('date', models.DateTimeField()),
                ('rank', models.PositiveIntegerField(blank=True, null=True)),
                ('old_rating', models.IntegerField()),
                ('new_rating', models.IntegerField()),
                ('rating_change', models.IntegerField()),
                ('unsolved_problems', models.IntegerField(blank=True, null=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='contest_results', to='core.student')),
            ],
            options={
                'verbose_name': 'Contest Result',
                'verbose_name_plural': 'Contest Results',
                'ordering': ['date', 'id'],
                'indexes': [models.Index(fields=['student', 'date'], name='core_contestresult_stu_date')],
            },
        ),
    ]
