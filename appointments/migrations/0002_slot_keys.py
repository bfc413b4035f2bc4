import django.db.models.deletion
from django.db import migrations, models


def fill_keys(apps, schema_editor):
    Appointment = apps.get_model('appointments', 'Appointment')
    Payment = apps.get_model('appointments', 'Payment')
    for appt in Appointment.objects.exclude(status='cancelled').only('id', 'doctor_id', 'date', 'time'):
        key = f"{appt.doctor_id}:{appt.date.isoformat()}:{appt.time}"
        Appointment.objects.filter(id=appt.id).update(active_slot=key)
    for payment in Payment.objects.filter(status='completed').only('id', 'appointment_id'):
        Payment.objects.filter(id=payment.id).update(settled_for_id=payment.appointment_id)


class Migration(migrations.Migration):

    dependencies = [
        ('appointments', '0001_initial'),
    ]

    operations = [
        migrations.RemoveConstraint(
            model_name='appointment',
            name='uniq_active_appointment_slot',
        ),
        migrations.RemoveConstraint(
            model_name='payment',
            name='uniq_completed_payment_per_appointment',
        ),
        migrations.AddField(
            model_name='appointment',
            name='active_slot',
            field=models.CharField(blank=True, editable=False, max_length=64, null=True, unique=True),
        ),
        migrations.AddField(
            model_name='payment',
            name='settled_for',
            field=models.OneToOneField(blank=True, editable=False, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='settled_payment', to='appointments.appointment'),
        ),
        migrations.RunPython(fill_keys, migrations.RunPython.noop),
    ]
