import logging
from app import create_app
from models import db, User, Category, Thread, Comment, Vote
from queries import get_or_create_tags
from flask_bcrypt import Bcrypt

logger = logging.getLogger('init_db')

CATEGORIES = [
    ('Announcements', 'News and updates from the moderators', 'megaphone'),
    ('General Discussion', 'Talk about anything with the community', 'message-square'),
    ('Help & Support', 'Ask questions and get answers', 'life-buoy'),
    ('Show and Tell', 'Share what you have built', 'lightbulb'),
    ('Site Feedback', 'Suggestions and bug reports for the forum', 'flag'),
]

SAMPLE_THREADS = [
    ('Welcome to ThreadHub', 'Announcements',
     'Read the community guidelines, introduce yourself, and enjoy your stay.',
     ['welcome', 'guidelines'], True, True),
    ('How do I keep state between renders?', 'Help & Support',
     'I keep losing my counter value every time the page refreshes. What am I missing?',
     ['question', 'help'], False, False),
    ('My first portfolio site', 'Show and Tell',
     'Finally shipped it. Feedback on the layout and load time is welcome!',
     ['feedback', 'showcase'], False, True),
]

def populate(bcrypt):
    if not User.query.filter_by(username='admin').first():
        pw = bcrypt.generate_password_hash('adminpass').decode('utf-8')
        admin = User(username='admin', email='admin@example.com', password_hash=pw, role='admin',
                     display_name='Admin', bio='Admin user')
        db.session.add(admin)
    if not User.query.filter_by(username='member').first():
        pw = bcrypt.generate_password_hash('memberpass').decode('utf-8')
        db.session.add(User(username='member', email='member@example.com', password_hash=pw,
                            display_name='Sam Member', bio='Regular user'))
    if Category.query.count() == 0:
        db.session.add_all([Category(name=n, description=d, icon=i) for n, d, i in CATEGORIES])
    db.session.commit()

    if Thread.query.count() > 0:
        logger.info('database already contains threads, skipping sample content')
        return
    admin = User.query.filter_by(username='admin').one()
    member = User.query.filter_by(username='member').one()
    threads = []
    for title, cat_name, content, tags, pinned, featured in SAMPLE_THREADS:
        cat = Category.query.filter_by(name=cat_name).one()
        thread = Thread(title=title, content=content, category_id=cat.id, author_id=admin.id,
                        is_pinned=pinned, is_featured=featured, tags=get_or_create_tags(tags))
        db.session.add(thread)
        threads.append(thread)
    db.session.flush()

    question = threads[1]
    answer = Comment(thread_id=question.id, author_id=member.id, is_answer=True,
                     content='Store the value in state instead of a plain variable.')
    db.session.add(answer)
    db.session.flush()
    db.session.add(Comment(thread_id=question.id, author_id=admin.id, parent_id=answer.id,
                           content='To add to that: state survives re-renders, locals do not.'))
    db.session.add(Vote(user_id=admin.id, entity_type='comment', entity_id=answer.id, vote_type='up'))
    db.session.add(Vote(user_id=member.id, entity_type='thread', entity_id=threads[0].id, vote_type='up'))
    db.session.commit()
    logger.info('seeded %d threads', len(threads))

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    bcrypt = Bcrypt(app)
    with app.app_context():
        db.create_all()
        populate(bcrypt)
    print("DB initialized.")
