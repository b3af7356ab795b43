from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from apps.shop.models import CartItem, Order, OrderItem, Product

PRODUCTS = [
    ('Royal Canin Kitten 2kg', 'food', '285000', 50),
    ('Whiskas Tuna 1.2kg', 'food', '65000', 100),
    ('Me-O Creamy Treats (4x15g)', 'food', '22000', 200),
    ('Detick Flea Drops 1ml', 'medicine', '35000', 150),
    ('Nutri-Plus Vitamin Gel', 'supplements', '145000', 30),
    ('Scented Cat Litter 10L', 'grooming', '55000', 40),
    ('Anti-Fungal Shampoo 250ml', 'grooming', '45000', 60),
    ('Feather Wand Toy', 'accessories', '15000', 80),
]


class Command(BaseCommand):
    help = 'Seed the pet-supply catalog and an admin account'

    def add_arguments(self, parser):
        parser.add_argument('--clear', action='store_true', help='Clear existing orders, carts and products first')
        parser.add_argument('--admin-email', default='test@example.com')
        parser.add_argument('--admin-password', default='secret')

    def handle(self, *args, **options):
        if options['clear']:
            OrderItem.objects.all().delete()
            Order.objects.all().delete()
            CartItem.objects.all().delete()
            Product.objects.all().delete()
            self.stdout.write(self.style.WARNING('Cleared existing data.'))

        for title, category, price, stock in PRODUCTS:
            Product.objects.get_or_create(
                title=title,
                defaults={'category': category, 'price': Decimal(price), 'stock': stock},
            )
        self.stdout.write(f'Products ready: {Product.objects.count()}')

        User = get_user_model()
        email = options['admin_email']
        if User.objects.filter(username=email).exists():
            self.stdout.write('Admin already exists.')
        else:
            User.objects.create_superuser(username=email, email=email, password=options['admin_password'])
            self.stdout.write(self.style.SUCCESS(f'Admin created: {email}'))
