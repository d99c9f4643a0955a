from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("payments", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="payment",
            name="amount_refunded",
            field=models.PositiveIntegerField(
                default=0,
                help_text="Cents Stripe reports as refunded on the charge, recorded even before the payment settles",
            ),
        ),
    ]
