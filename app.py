import logging
from functools import wraps
from flask import Flask, render_template, request, redirect, url_for, flash, abort, jsonify
from markupsafe import Markup
from config import Config
from models import db, User, Category, Thread, Comment, Notification
from flask_bcrypt import Bcrypt
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
import markdown
from markdown.extensions import Extension

from auth_session import AuthSession, refresh_profile_cache, sync_profile_cache
from comment_tree import annotate_votes, build_comment_tree, iter_tree
from errors import AuthError, ValidationError, register_error_handlers, wants_json
import queries
from votes import cast_vote, delete_votes, tally_for

STATIC_PAGES = {
    'about': ('About', 'ThreadHub is a place for communities to ask questions, share what they '
                       'know and vote the best answers to the top.'),
    'contact': ('Contact', 'Questions about the forum? Reach the moderators through the '
                           'Site Feedback category.'),
    'cookies': ('Cookie Policy', 'We use a single signed session cookie to keep you logged in '
                                 'and remember your profile between pages.'),
    'faq': ('FAQ', 'Vote with the arrows next to a thread or comment. Clicking the same arrow '
                   'again removes your vote.'),
    'guidelines': ('Community Guidelines', 'Be kind, stay on topic, and mark the answer that '
                                           'solved your problem so others can find it.'),
    'help': ('Help Center', 'Start a thread from any category page. Reply to a comment to keep '
                            'the conversation nested.'),
    'privacy': ('Privacy Policy', 'Your email is never shown publicly. Profiles show only what '
                                  'you choose to share.'),
    'terms': ('Terms of Service', 'By posting you agree to follow the community guidelines '
                                  'and to license your posts to the forum.'),
}

LISTINGS = {
    'recent': ('Recent Discussions', 'The latest conversations across all categories.',
               queries.recent_threads),
    'popular': ('Popular Discussions', 'The most upvoted discussions in the community.',
                queries.popular_threads),
    'unanswered': ('Unanswered Discussions', "These discussions haven't received a response yet.",
                   queries.unanswered_threads),
    'featured': ('Featured Discussions', 'Noteworthy discussions picked by the moderators.',
                 queries.featured_threads),
}

def _safe_next(target):
    # Browsers read a backslash as a slash, so "/\host" is offsite too.
    if target and target.startswith('/') and not target.startswith(('//', '/\\')):
        return target
    return None

class EscapeRawHtml(Extension):
    """Render raw HTML in user content as text instead of passing it through."""

    def extendMarkdown(self, md):
        md.preprocessors.deregister('html_block')
        md.inlinePatterns.deregister('html')

def _normalize_website(website):
    if website and not website.startswith(('http://', 'https://')):
        return f'https://{website}'
    return website

def _require_author_or_staff(obj):
    if current_user.id != obj.author_id and not current_user.is_staff:
        abort(403)

def notify(user_id, title, message, link=None):
    if user_id is None or user_id == current_user.id:
        return
    db.session.add(Notification(user_id=user_id, title=title, message=message, link=link))

def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    for name in ('comment_tree', 'votes', 'errors'):
        logging.getLogger(name).setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(app)
    bcrypt = Bcrypt(app)
    login_manager = LoginManager(app)
    login_manager.login_view = 'login'
    register_error_handlers(app, db)

    auth = AuthSession()
    auth.subscribe(sync_profile_cache, sender=app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        raise AuthError()

    @app.context_processor
    def inject_auth():
        unread = 0
        if current_user.is_authenticated:
            unread = current_user.notifications.filter_by(read=False).count()
        return {'auth': auth, 'unread_notifications': unread,
                'max_depth': app.config['COMMENTS_MAX_DEPTH_DISPLAY']}

    @app.template_filter('markdown')
    def _markdown_to_html(text):
        return Markup(markdown.markdown(text or '', extensions=[EscapeRawHtml(), 'fenced_code', 'tables']))

    @app.errorhandler(403)
    def forbidden(err):
        if wants_json():
            return jsonify(error='Forbidden'), 403
        return render_template('error.html', code=403, message='You cannot do that.'), 403

    @app.errorhandler(404)
    def not_found(err):
        if wants_json():
            return jsonify(error='Not found'), 404
        return render_template('error.html', code=404, message='Nothing here.'), 404

    # ---------- Index -----------
    @app.route('/')
    def index():
        categories = queries.list_categories()
        return render_template('index.html', categories=categories,
                               featured=queries.featured_threads()[:3],
                               pinned=queries.pinned_threads()[:5],
                               recent=queries.recent_threads()[:8])

    # ---------- Auth -----------
    @app.route('/register', methods=['GET','POST'])
    def register():
        if current_user.is_authenticated:
            return redirect(url_for('index'))
        if request.method == 'POST':
            username = request.form.get('username','').strip()
            email = request.form.get('email','').strip().lower()
            password = request.form.get('password','')
            display_name = request.form.get('display_name','').strip()
            if not username or not email or not password:
                flash('Please fill all required fields.', 'danger')
                return render_template('register.html'), 400
            if len(password) < 6:
                flash('Password must be at least 6 characters.', 'danger')
                return render_template('register.html'), 400
            if User.query.filter_by(username=username).first():
                flash('Username already taken.', 'danger')
                return render_template('register.html'), 400
            if User.query.filter_by(email=email).first():
                flash('Email already registered.', 'danger')
                return render_template('register.html'), 400
            pw_hash = bcrypt.generate_password_hash(password).decode('utf-8')
            user = User(username=username, email=email, password_hash=pw_hash,
                        display_name=display_name or None)
            db.session.add(user)
            db.session.commit()
            app.logger.info('registered user %s', user.username)
            flash('Account created. You can now login.', 'success')
            return redirect(url_for('login'))
        return render_template('register.html')

    @app.route('/login', methods=['GET','POST'])
    def login():
        if current_user.is_authenticated:
            return redirect(url_for('index'))
        if request.method == 'POST':
            identifier = request.form.get('username','').strip()
            password = request.form.get('password','')
            user = User.query.filter((User.username == identifier) |
                                     (User.email == identifier.lower())).first()
            if user and bcrypt.check_password_hash(user.password_hash, password):
                login_user(user, remember=bool(request.form.get('remember')))
                flash('Logged in successfully.', 'success')
                return redirect(_safe_next(request.args.get('next')) or url_for('index'))
            app.logger.info('failed login for %r', identifier)
            flash('Invalid username/password.', 'danger')
            return render_template('login.html'), 401
        return render_template('login.html')

    @app.route('/logout')
    @login_required
    def logout():
        logout_user()
        flash('Logged out.', 'info')
        return redirect(url_for('index'))

    # ---------- Categories ----------
    @app.route('/categories')
    def categories():
        q = request.args.get('q','')
        sort = request.args.get('sort','name')
        categories = queries.list_categories(q, sort)
        return render_template('categories.html', categories=categories, query=q, sort=sort)

    @app.route('/category/<int:cat_id>')
    def view_category(cat_id):
        page = request.args.get('page', 1, type=int)
        q = request.args.get('q','')
        cat = db.get_or_404(Category, cat_id)
        pagination = queries.paginate_list(queries.category_threads(cat_id, q), page,
                                           app.config['THREADS_PER_PAGE'])
        return render_template('category.html', category=cat, threads=pagination.items,
                               pagination=pagination, query=q)

    # ---------- Thread listings ----------
    @app.route('/threads/<kind>')
    def thread_listing(kind):
        if kind not in LISTINGS:
            abort(404)
        title, blurb, listing = LISTINGS[kind]
        page = request.args.get('page', 1, type=int)
        q = request.args.get('q','')
        pagination = queries.paginate_list(listing(q), page, app.config['THREADS_PER_PAGE'])
        return render_template('listing.html', title=title, blurb=blurb, threads=pagination.items,
                               pagination=pagination, query=q,
                               endpoint='thread_listing', endpoint_args={'kind': kind})

    @app.route('/tag/<name>')
    def view_tag(name):
        page = request.args.get('page', 1, type=int)
        q = request.args.get('q','')
        pagination = queries.paginate_list(queries.tagged_threads(name, q), page,
                                           app.config['THREADS_PER_PAGE'])
        return render_template('listing.html', title=f'Tagged: {name}', blurb=None,
                               threads=pagination.items, pagination=pagination, query=q,
                               endpoint='view_tag', endpoint_args={'name': name})

    @app.route('/search')
    def search():
        q = request.args.get('q','').strip()
        page = request.args.get('page', 1, type=int)
        results = queries.recent_threads(q) if q else []
        pagination = queries.paginate_list(results, page, app.config['THREADS_PER_PAGE'])
        return render_template('listing.html', title='Search', blurb=None, threads=pagination.items,
                               pagination=pagination, query=q, endpoint='search', endpoint_args={})

    @app.route('/my/threads')
    @login_required
    def my_threads():
        q = request.args.get('q','')
        page = request.args.get('page', 1, type=int)
        pagination = queries.paginate_list(queries.author_threads(current_user.id, q), page,
                                           app.config['THREADS_PER_PAGE'])
        return render_template('listing.html', title='My Threads', blurb='Threads you have started.',
                               threads=pagination.items, pagination=pagination, query=q,
                               endpoint='my_threads', endpoint_args={}, manage=True)

    # ---------- Threads ----------
    @app.route('/thread/<int:thread_id>')
    def view_thread(thread_id):
        thread = db.get_or_404(Thread, thread_id)
        user_id = current_user.id if current_user.is_authenticated else None
        comments = queries.thread_comments(thread.id)
        ids = [c.id for c in comments]
        roots = build_comment_tree(comments)
        annotate_votes(roots, queries.vote_counts_for('comment', ids),
                       queries.user_votes_for(user_id, 'comment', ids))
        return render_template('thread.html', thread=thread,
                               tally=tally_for(user_id, 'thread', thread.id),
                               comment_nodes=list(iter_tree(roots)),
                               comment_count=len(comments))

    @app.route('/threads/new', methods=['GET','POST'])
    @app.route('/category/<int:cat_id>/create_thread', methods=['GET','POST'])
    @login_required
    def create_thread(cat_id=None):
        categories = queries.list_categories()
        selected = cat_id or request.values.get('category', type=int)
        if request.method == 'POST':
            title = request.form.get('title','').strip()
            content = request.form.get('content','').strip()
            cat = db.session.get(Category, selected) if selected else None
            form = dict(title=title, content=content, tags=request.form.get('tags',''))
            if not title or not content or cat is None:
                flash('Title, category and message required.', 'danger')
                return render_template('thread_form.html', categories=categories,
                                       selected=selected, form=form), 400
            try:
                tag_names = queries.parse_tags(form['tags'], app.config['MAX_TAGS'])
            except ValidationError as err:
                flash(err.message, 'danger')
                return render_template('thread_form.html', categories=categories,
                                       selected=selected, form=form), 400
            thread = Thread(category_id=cat.id, title=title, content=content,
                            author_id=current_user.id, tags=queries.get_or_create_tags(tag_names))
            db.session.add(thread)
            db.session.commit()
            app.logger.info('user %s created thread %s', current_user.id, thread.id)
            flash('Thread created.', 'success')
            return redirect(url_for('view_thread', thread_id=thread.id))
        return render_template('thread_form.html', categories=categories, selected=selected, form={})

    @app.route('/thread/<int:thread_id>/edit', methods=['GET','POST'])
    @login_required
    def edit_thread(thread_id):
        thread = db.get_or_404(Thread, thread_id)
        _require_author_or_staff(thread)
        categories = queries.list_categories()
        if request.method == 'POST':
            form = dict(title=request.form.get('title','').strip(),
                        content=request.form.get('content','').strip(),
                        tags=request.form.get('tags',''))
            if not form['title'] or not form['content']:
                flash('Title and message required.', 'danger')
                return render_template('thread_form.html', thread=thread, categories=categories,
                                       selected=thread.category_id, form=form), 400
            try:
                tag_names = queries.parse_tags(form['tags'], app.config['MAX_TAGS'])
            except ValidationError as err:
                flash(err.message, 'danger')
                return render_template('thread_form.html', thread=thread, categories=categories,
                                       selected=thread.category_id, form=form), 400
            thread.title = form['title']
            thread.content = form['content']
            thread.tags = queries.get_or_create_tags(tag_names)
            db.session.commit()
            flash('Thread updated.', 'success')
            return redirect(url_for('view_thread', thread_id=thread.id))
        form = dict(title=thread.title, content=thread.content, tags=', '.join(thread.tag_names))
        return render_template('thread_form.html', thread=thread, categories=categories,
                               selected=thread.category_id, form=form)

    @app.route('/thread/<int:thread_id>/delete', methods=['POST'])
    @login_required
    def delete_thread(thread_id):
        thread = db.get_or_404(Thread, thread_id)
        _require_author_or_staff(thread)
        cat_id = thread.category_id
        delete_votes('comment', [c.id for c in thread.comments])
        delete_votes('thread', [thread.id])
        db.session.delete(thread)
        db.session.commit()
        app.logger.info('user %s deleted thread %s', current_user.id, thread_id)
        flash('Thread deleted.', 'info')
        return redirect(url_for('view_category', cat_id=cat_id))

    def staff_required(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated or not current_user.is_staff:
                abort(403)
            return func(*args, **kwargs)
        return wrapper

    @app.route('/thread/<int:thread_id>/pin', methods=['POST'])
    @login_required
    @staff_required
    def toggle_pin(thread_id):
        thread = db.get_or_404(Thread, thread_id)
        thread.is_pinned = not thread.is_pinned
        db.session.commit()
        flash('Thread pinned.' if thread.is_pinned else 'Thread unpinned.', 'info')
        return redirect(url_for('view_thread', thread_id=thread.id))

    @app.route('/thread/<int:thread_id>/feature', methods=['POST'])
    @login_required
    @staff_required
    def toggle_feature(thread_id):
        thread = db.get_or_404(Thread, thread_id)
        thread.is_featured = not thread.is_featured
        db.session.commit()
        flash('Thread featured.' if thread.is_featured else 'Thread no longer featured.', 'info')
        return redirect(url_for('view_thread', thread_id=thread.id))

    # ---------- Comments ----------
    @app.route('/thread/<int:thread_id>/comment', methods=['POST'])
    @login_required
    def add_comment(thread_id):
        thread = db.get_or_404(Thread, thread_id)
        content = request.form.get('content','').strip()
        if not content:
            raise ValidationError('Comment cannot be empty.')
        parent_id = request.form.get('parent_id', type=int)
        parent = None
        if parent_id is not None:
            parent = db.session.get(Comment, parent_id)
            if parent is None or parent.thread_id != thread.id:
                raise ValidationError('You can only reply to a comment in this thread.')
        comment = Comment(thread_id=thread.id, author_id=current_user.id,
                          content=content, parent_id=parent.id if parent else None)
        db.session.add(comment)
        db.session.flush()  # get comment.id
        link = url_for('view_thread', thread_id=thread.id, _anchor=f'comment-{comment.id}')
        notify(thread.author_id, 'New comment',
               f'{current_user.name} commented on "{thread.title}".', link)
        if parent is not None and parent.author_id != thread.author_id:
            notify(parent.author_id, 'New reply',
                   f'{current_user.name} replied to your comment on "{thread.title}".', link)
        db.session.commit()
        flash('Reply posted.', 'success')
        return redirect(link)

    @app.route('/comment/<int:comment_id>/edit', methods=['GET','POST'])
    @login_required
    def edit_comment(comment_id):
        comment = db.get_or_404(Comment, comment_id)
        _require_author_or_staff(comment)
        if request.method == 'POST':
            content = request.form.get('content','').strip()
            if not content:
                flash('Comment cannot be empty.', 'danger')
                return render_template('comment_edit.html', comment=comment), 400
            comment.content = content
            db.session.commit()
            flash('Comment updated.', 'success')
            return redirect(url_for('view_thread', thread_id=comment.thread_id,
                                    _anchor=f'comment-{comment.id}'))
        return render_template('comment_edit.html', comment=comment)

    @app.route('/comment/<int:comment_id>/delete', methods=['POST'])
    @login_required
    def delete_comment(comment_id):
        comment = db.get_or_404(Comment, comment_id)
        _require_author_or_staff(comment)
        thread_id = comment.thread_id
        roots = build_comment_tree(queries.thread_comments(thread_id))
        subtree = next(node for node, _ in iter_tree(roots) if node.comment.id == comment.id)
        delete_votes('comment', [node.comment.id for node, _ in iter_tree([subtree])])
        db.session.delete(comment)
        db.session.commit()
        flash('Comment deleted.', 'info')
        return redirect(url_for('view_thread', thread_id=thread_id))

    @app.route('/comment/<int:comment_id>/accept', methods=['POST'])
    @login_required
    def accept_answer(comment_id):
        comment = db.get_or_404(Comment, comment_id)
        thread = comment.thread
        if current_user.id != thread.author_id:
            abort(403)
        accepted = not comment.is_answer
        if accepted:
            thread.comments.filter(Comment.is_answer.is_(True)) \
                .update({Comment.is_answer: False}, synchronize_session='fetch')
        comment.is_answer = accepted
        db.session.commit()
        if accepted:
            notify(comment.author_id, 'Answer accepted',
                   f'Your comment was accepted as the answer to "{thread.title}".',
                   url_for('view_thread', thread_id=thread.id, _anchor=f'comment-{comment.id}'))
            db.session.commit()
        flash('Answer accepted.' if accepted else 'Answer unmarked.', 'success')
        return redirect(url_for('view_thread', thread_id=thread.id))

    # ---------- Votes ----------
    @app.route('/vote/<entity_type>/<int:entity_id>', methods=['POST'])
    @login_required
    def vote(entity_type, entity_id):
        payload = request.form
        if request.is_json:
            payload = request.get_json(silent=True)
            if not isinstance(payload, dict):
                raise ValidationError('Vote body must be a JSON object.')
        tally = cast_vote(current_user, entity_type, entity_id, payload.get('direction'))
        if wants_json():
            return jsonify(tally.as_dict())
        thread_id = entity_id
        if entity_type == 'comment':
            thread_id = db.session.get(Comment, entity_id).thread_id
        return redirect(url_for('view_thread', thread_id=thread_id))

    # ---------- Notifications ----------
    @app.route('/notifications')
    @login_required
    def notifications():
        items = current_user.notifications.order_by(Notification.created_at.desc(),
                                                    Notification.id.desc()).all()
        return render_template('notifications.html', notifications=items)

    @app.route('/notifications/read/<int:notification_id>', methods=['POST'])
    @login_required
    def read_notification(notification_id):
        item = db.get_or_404(Notification, notification_id)
        if item.user_id != current_user.id:
            abort(404)
        item.read = True
        db.session.commit()
        return redirect(item.link or url_for('notifications'))

    @app.route('/notifications/read-all', methods=['POST'])
    @login_required
    def read_all_notifications():
        current_user.notifications.filter_by(read=False).update({Notification.read: True})
        db.session.commit()
        return redirect(url_for('notifications'))

    @app.route('/notifications/clear', methods=['POST'])
    @login_required
    def clear_notifications():
        current_user.notifications.delete()
        db.session.commit()
        flash('Notifications cleared.', 'info')
        return redirect(url_for('notifications'))

    # ---------- Admin: Create Category ----------
    def admin_required(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated or current_user.role != 'admin':
                abort(403)
            return func(*args, **kwargs)
        return wrapper

    @app.route('/admin/create_category', methods=['GET','POST'])
    @login_required
    @admin_required
    def create_category():
        if request.method == 'POST':
            name = request.form.get('name','').strip()
            desc = request.form.get('description','').strip()
            icon = request.form.get('icon','').strip()
            if not name:
                flash('Name required.', 'danger')
                return render_template('admin_create_category.html'), 400
            if Category.query.filter_by(name=name).first():
                flash('Category already exists.', 'danger')
                return render_template('admin_create_category.html'), 400
            cat = Category(name=name, description=desc, icon=icon or None)
            db.session.add(cat)
            db.session.commit()
            flash('Category created.', 'success')
            return redirect(url_for('categories'))
        return render_template('admin_create_category.html')

    # ---------- Profiles ----------
    @app.route('/user/<username>')
    def profile(username):
        user = User.query.filter_by(username=username).first_or_404()
        page = request.args.get('page', 1, type=int)
        pagination = queries.paginate_list(queries.author_threads(user.id), page,
                                           app.config['THREADS_PER_PAGE'])
        return render_template('profile.html', user=user, threads=pagination.items,
                               pagination=pagination,
                               comment_total=user.comments.count())

    @app.route('/profile/edit', methods=['GET','POST'])
    @login_required
    def edit_profile():
        if request.method == 'POST':
            email = request.form.get('email','').strip().lower()
            if not email:
                flash('Email is required.', 'danger')
                return render_template('profile_edit.html', user=current_user), 400
            taken = User.query.filter(User.email == email, User.id != current_user.id).first()
            if taken:
                flash('Email already registered.', 'danger')
                return render_template('profile_edit.html', user=current_user), 400
            current_user.email = email
            current_user.display_name = request.form.get('display_name','').strip() or None
            current_user.avatar_url = request.form.get('avatar_url','').strip() or None
            current_user.bio = request.form.get('bio','').strip() or None
            current_user.location = request.form.get('location','').strip() or None
            current_user.website = _normalize_website(request.form.get('website','').strip() or None)
            db.session.commit()
            refresh_profile_cache(current_user)
            flash('Profile updated.', 'success')
            return redirect(url_for('profile', username=current_user.username))
        return render_template('profile_edit.html', user=current_user)

    # ---------- Static pages ----------
    @app.route('/pages/<slug>')
    def static_page(slug):
        if slug not in STATIC_PAGES:
            abort(404)
        title, body = STATIC_PAGES[slug]
        return render_template('page.html', title=title, body=body)

    return app

if __name__ == '__main__':
    logging.basicConfig(level=Config.LOG_LEVEL)
    app = create_app()
    with app.app_context():
        db.create_all()
    app.run(debug=True)
