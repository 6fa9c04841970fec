from datetime import date, timedelta

import pytest

from library_admin import create_app
from library_admin.auth import hash_password
from library_admin.extensions import db
from library_admin.models import Author, Book, Category, Member, MemberStatus, Staff, StaffRole
from library_admin.store import SqlAlchemyStore
from library_admin.lending import LendingEngine

PASSWORD = 'librarian123'


class Clock:
    def __init__(self, today):
        self.today = today

    def __call__(self):
        return self.today

    def advance(self, days):
        self.today += timedelta(days=days)


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'library.db'}",
        'JWT_SECRET_KEY': 'test-jwt-secret-key-long-enough-for-hs256',
        'BCRYPT_LOG_ROUNDS': 4,
        'FINE_PER_DAY': '50',
        'LOG_LEVEL': 'DEBUG',
        'FRONTEND_URL': 'http://localhost:3000',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


def add_staff(username, role, status='Active'):
    staff = Staff(
        username=username,
        password_hash=hash_password(PASSWORD),
        first_name=username.title(),
        last_name='Staff',
        email=f'{username}@library.test',
        role=role,
        status=status,
    )
    db.session.add(staff)
    return staff


def add_book(title, isbn, category, total=2, author='Frank Herbert'):
    writer = Author.query.filter_by(author_name=author).first() or Author(author_name=author)
    book = Book(
        isbn=isbn,
        title=title,
        category=category,
        publisher='Ace',
        publication_year=1965,
        price=1500,
        total_copies=total,
        available_copies=total,
        authors=[writer],
    )
    db.session.add(book)
    return book


def add_member(first_name, email, status=MemberStatus.ACTIVE, membership_type='General'):
    member = Member(
        first_name=first_name,
        last_name='Perera',
        email=email,
        phone='0771234567',
        membership_type=membership_type,
        status=status,
        join_date=date(2024, 1, 1),
        expiry_date=date(2030, 1, 1),
    )
    db.session.add(member)
    return member


@pytest.fixture
def seed(app):
    with app.app_context():
        admin = add_staff('admin', StaffRole.ADMIN)
        librarian = add_staff('librarian', StaffRole.LIBRARIAN)
        fiction = Category(category_name='Fiction')
        science = Category(category_name='Science')
        db.session.add_all([fiction, science])
        dune = add_book('Dune', '9780441172719', fiction, total=2)
        last_copy = add_book('Cosmos', '9780345539434', science, total=1, author='Carl Sagan')
        alice = add_member('Alice', 'alice@example.com')
        bob = add_member('Bob', 'bob@example.com', membership_type='Student')
        carol = add_member('Carol', 'carol@example.com', status=MemberStatus.SUSPENDED)
        db.session.commit()
        return {
            'admin_id': admin.id,
            'staff_id': librarian.id,
            'fiction_id': fiction.id,
            'science_id': science.id,
            'book_id': dune.id,
            'last_copy_id': last_copy.id,
            'member_id': alice.id,
            'member2_id': bob.id,
            'suspended_id': carol.id,
        }


@pytest.fixture
def ctx(app, seed):
    with app.app_context():
        yield seed


@pytest.fixture
def clock():
    return Clock(date(2025, 1, 1))


@pytest.fixture
def make_engine(clock):
    def make(session=None, fine_per_day='50', max_attempts=3):
        store = SqlAlchemyStore(session or db.session, max_attempts=max_attempts)
        return LendingEngine(store, fine_per_day=fine_per_day, clock=clock)
    return make


def login(client, username):
    response = client.post('/api/auth/login', json={'username': username, 'password': PASSWORD})
    assert response.status_code == 200, response.get_json()
    return {'Authorization': f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def librarian_headers(client, seed):
    return login(client, 'librarian')


@pytest.fixture
def admin_headers(client, seed):
    return login(client, 'admin')
