from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('api', '0001_initial'),
    ]

    operations = [
        migrations.AlterField(
            model_name='subscription',
            name='status',
            field=models.CharField(
                choices=[
                    ('active', 'Active'),
                    ('incomplete', 'Awaiting payment'),
                    ('cancelled', 'Cancelled'),
                    ('past_due', 'Past due'),
                ],
                default='active',
                max_length=10,
            ),
        ),
    ]
