import bookings.models
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Staff',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('email', models.EmailField(blank=True, default='', max_length=254)),
                ('time_zone', models.CharField(default='UTC', max_length=64, validators=[bookings.models.validate_time_zone])),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name_plural': 'staff',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='RecurringBooking',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('client_name', models.CharField(blank=True, default='', max_length=200)),
                ('client_email', models.EmailField(blank=True, default='', max_length=254)),
                ('frequency', models.CharField(choices=[('weekly', 'Weekly'), ('biweekly', 'Biweekly'), ('monthly', 'Monthly')], max_length=20)),
                ('interval', models.PositiveIntegerField(default=1, help_text='Every N weeks/months (ignored as a multiplier for biweekly)')),
                ('day_of_week', models.PositiveSmallIntegerField(blank=True, choices=[(0, 'Sunday'), (1, 'Monday'), (2, 'Tuesday'), (3, 'Wednesday'), (4, 'Thursday'), (5, 'Friday'), (6, 'Saturday')], help_text='Weekly/biweekly only (0=Sunday, 6=Saturday)', null=True)),
                ('day_of_month', models.PositiveSmallIntegerField(blank=True, help_text="Monthly only (1-31, clamped to the month's last day)", null=True)),
                ('start_time', models.TimeField(blank=True, help_text='Wall-clock time of day in time_zone', null=True)),
                ('start_date', models.DateTimeField(help_text='First occurrence; anchors the cadence and time of day')),
                ('time_zone', models.CharField(default='UTC', max_length=64, validators=[bookings.models.validate_time_zone])),
                ('duration_minutes', models.PositiveIntegerField(default=60)),
                ('end_date', models.DateTimeField(blank=True, help_text='No occurrence may start after this (null = no end date)', null=True)),
                ('occurrences', models.PositiveIntegerField(blank=True, help_text='Maximum number of bookings to materialize (null = unlimited)', null=True)),
                ('status', models.CharField(choices=[('active', 'Active'), ('paused', 'Paused'), ('cancelled', 'Cancelled'), ('completed', 'Completed')], default='active', max_length=20)),
                ('generated_booking_ids', models.JSONField(blank=True, default=list, help_text='Ids of bookings materialized from this series, in order')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('staff', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='recurring_bookings', to='bookings.staff')),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'staff'], name='bookings_re_status_7c1f0e_idx'),
                    models.Index(fields=['start_date', 'end_date'], name='bookings_re_start_d_2b9a41_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Booking',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('client_name', models.CharField(blank=True, default='', max_length=200)),
                ('client_email', models.EmailField(blank=True, default='', max_length=254)),
                ('start_datetime', models.DateTimeField()),
                ('end_datetime', models.DateTimeField()),
                ('occurrence_datetime', models.DateTimeField(blank=True, help_text='Series occurrence this booking was materialized for; unchanged by rescheduling', null=True)),
                ('time_zone', models.CharField(default='UTC', max_length=64, validators=[bookings.models.validate_time_zone])),
                ('duration_minutes', models.PositiveIntegerField(default=60)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('confirmed', 'Confirmed'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('no-show', 'No-show'), ('rescheduled', 'Rescheduled')], default='pending', max_length=20)),
                ('cancellation_reason', models.TextField(blank=True, default='')),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('reminders_sent', models.JSONField(blank=True, default=list)),
                ('internal_notes', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('recurring_booking', models.ForeignKey(blank=True, help_text='Series this booking was materialized from (null for one-off bookings)', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='bookings', to='bookings.recurringbooking')),
                ('staff', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='bookings', to='bookings.staff')),
            ],
            options={
                'ordering': ['start_datetime'],
                'indexes': [
                    models.Index(fields=['staff', 'start_datetime'], name='bookings_bo_staff_i_5d0c3a_idx'),
                    models.Index(fields=['start_datetime', 'status'], name='bookings_bo_start_d_8e6b27_idx'),
                    models.Index(fields=['recurring_booking', 'start_datetime'], name='bookings_bo_recurri_a41f96_idx'),
                ],
            },
        ),
    ]
