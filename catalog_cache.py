"""
Catalog Cache
SQLite cache of remote plugin/patch repositories and patch file listings
"""

import json
import logging
import time
from pathlib import Path

from sqlalchemy import (Column, Integer, String, Text, Index, UniqueConstraint,
                        MetaData, create_engine, event, func)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from appstore_errors import StorageError
from appstore_models import CatalogEntry, PatchFileEntry, KIND_PLUGIN, KIND_PATCH

logger = logging.getLogger(__name__)

# Bump to force a full rebuild of existing cache files.
SCHEMA_VERSION = 20241121

CacheBase = declarative_base()


class RepoRow(CacheBase):
    __tablename__ = 'repos'

    id = Column(Integer, primary_key=True, autoincrement=True)
    repo_id = Column(Integer, nullable=False)
    kind = Column(String, nullable=False)
    name = Column(String, nullable=False)
    owner = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    description = Column(Text)
    stars = Column(Integer, nullable=False, default=0)
    language = Column(String)
    homepage = Column(String)
    default_branch = Column(String)
    fetched_at = Column(Integer, nullable=False)
    data = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint('repo_id', 'kind'),
        Index('idx_repos_kind_stars', 'kind', 'stars'),
    )


class PatchFileRow(CacheBase):
    __tablename__ = 'patch_files'

    id = Column(Integer, primary_key=True, autoincrement=True)
    repo_id = Column(Integer, nullable=False, index=True)
    path = Column(String, nullable=False)
    filename = Column(String, nullable=False)
    branch = Column(String)
    sha = Column(String)
    size = Column(Integer)
    download_url = Column(String)
    fetched_at = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint('repo_id', 'path'),)


def _normalize_string(value):
    if value is None:
        return ''
    return str(value)


def _normalize_number(value):
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _owner_login(repo):
    owner = repo.get('owner')
    if isinstance(owner, dict) and owner.get('login'):
        return str(owner['login'])
    if isinstance(owner, str):
        return owner
    return ''


class CatalogCache:
    def __init__(self, db_path):
        """Open (and migrate if needed) the cache database.

        Args:
            db_path: str/Path - SQLite file location, parent dirs are created
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )
        event.listen(self.engine, 'connect', self._configure_connection)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.init()

    @staticmethod
    def _configure_connection(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.close()

    def get_schema_version(self):
        with self.engine.connect() as conn:
            return conn.exec_driver_sql("PRAGMA user_version").scalar() or 0

    def init(self):
        """Create tables, wiping everything first if the schema is outdated.

        There is no incremental migration: the cache only mirrors remote
        data, so an outdated file is dropped and rebuilt on the next refresh.
        """
        try:
            current_version = self.get_schema_version()
            if current_version < SCHEMA_VERSION:
                logger.info("Resetting catalog cache %s (schema %s -> %s)",
                            self.db_path, current_version, SCHEMA_VERSION)
                self._reset_schema()
            CacheBase.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Catalog cache initialization failed: {e}") from e

    def _reset_schema(self):
        existing = MetaData()
        existing.reflect(bind=self.engine)
        existing.drop_all(bind=self.engine)
        with self.engine.connect() as conn:
            conn = conn.execution_options(isolation_level="AUTOCOMMIT")
            conn.exec_driver_sql("VACUUM")
            conn.exec_driver_sql(f"PRAGMA user_version = {int(SCHEMA_VERSION)}")

    def _write(self, description, fn):
        """Run fn(session) inside one transaction; roll back on any failure."""
        try:
            with self._session_factory.begin() as session:
                return fn(session)
        except SQLAlchemyError as e:
            logger.warning("Catalog cache %s failed: %s", description, e)
            raise StorageError(f"Catalog cache {description} failed: {e}") from e

    def _read(self, description, fn):
        try:
            with self._session_factory() as session:
                return fn(session)
        except SQLAlchemyError as e:
            logger.warning("Catalog cache %s failed: %s", description, e)
            raise StorageError(f"Catalog cache {description} failed: {e}") from e

    def store_repos(self, kind, repos, now=None):
        """Replace every cached repository of one kind.

        Delete and insert share a single transaction, so readers see either
        the old snapshot or the new one. An empty list is a valid result
        and empties the kind.

        Args:
            kind: str - 'plugin' or 'patch'
            repos: list - Raw GitHub repository payloads (dicts)
            now: Optional int - fetched_at override

        Returns:
            int - Number of rows stored
        """
        if kind not in (KIND_PLUGIN, KIND_PATCH):
            raise ValueError(f"Unknown catalog kind: {kind}")
        fetched_at = int(now if now is not None else time.time())

        rows = []
        for repo in repos or []:
            if not isinstance(repo, dict):
                continue
            repo_id = _normalize_number(repo.get('id'))
            if repo_id <= 0:
                logger.warning("Skipping %s repository without an id: %s", kind, repo.get('full_name'))
                continue
            try:
                encoded = json.dumps(repo)
            except (TypeError, ValueError) as e:
                logger.warning("Catalog cache encode error for %s: %s", repo.get('full_name'), e)
                encoded = ''
            rows.append(RepoRow(
                repo_id=repo_id,
                kind=kind,
                name=_normalize_string(repo.get('name')),
                owner=_owner_login(repo),
                full_name=_normalize_string(repo.get('full_name')),
                description=_normalize_string(repo.get('description')),
                stars=_normalize_number(repo.get('stargazers_count')),
                language=_normalize_string(repo.get('language')),
                homepage=_normalize_string(repo.get('homepage')),
                default_branch=_normalize_string(repo.get('default_branch')) or 'HEAD',
                fetched_at=fetched_at,
                data=encoded,
            ))

        def replace(session):
            session.query(RepoRow).filter(RepoRow.kind == kind).delete(synchronize_session=False)
            session.add_all(rows)
            return len(rows)

        stored = self._write(f"store of {kind} repos", replace)
        logger.info("Cached %d %s repositories", stored, kind)
        return stored

    def store_patch_files(self, repo_id, entries, now=None):
        """Replace the cached patch file listing of one repository.

        Args:
            repo_id: int - Remote repository id
            entries: list - Dicts with path, filename, branch, sha, size, download_url
            now: Optional int - fetched_at override

        Returns:
            int - Number of rows stored, None if repo_id is unusable
        """
        try:
            repo_id = int(repo_id)
        except (TypeError, ValueError):
            return None
        fetched_at = int(now if now is not None else time.time())

        rows = [
            PatchFileRow(
                repo_id=repo_id,
                path=_normalize_string(entry.get('path')),
                filename=_normalize_string(entry.get('filename')),
                branch=_normalize_string(entry.get('branch')),
                sha=_normalize_string(entry.get('sha')),
                size=_normalize_number(entry.get('size')),
                download_url=_normalize_string(entry.get('download_url')),
                fetched_at=fetched_at,
            )
            for entry in entries or []
        ]

        def replace(session):
            session.query(PatchFileRow).filter(PatchFileRow.repo_id == repo_id).delete(synchronize_session=False)
            session.add_all(rows)
            return len(rows)

        return self._write(f"store of patch files for repo {repo_id}", replace)

    def list_repos(self, kind=KIND_PLUGIN):
        """List cached repositories, most stars first, then by name.

        Args:
            kind: str - 'plugin' or 'patch'

        Returns:
            list - CatalogEntry objects
        """
        def query(session):
            return (
                session.query(RepoRow)
                .filter(RepoRow.kind == kind)
                .order_by(RepoRow.stars.desc(), func.lower(RepoRow.name).asc(), RepoRow.repo_id.asc())
                .all()
            )

        return [self._decode_row(row) for row in self._read(f"listing of {kind} repos", query)]

    def _decode_row(self, row):
        data = {}
        if row.data:
            try:
                decoded = json.loads(row.data)
                if isinstance(decoded, dict):
                    data = decoded
            except ValueError as e:
                logger.warning("Catalog cache decode error for %s: %s", row.full_name, e)
        return CatalogEntry(
            remote_id=row.repo_id,
            kind=row.kind,
            name=row.name,
            owner=row.owner,
            full_name=row.full_name,
            description=row.description or '',
            language=row.language or '',
            homepage=row.homepage or '',
            stars=row.stars or 0,
            default_branch=row.default_branch or 'HEAD',
            fetched_at=row.fetched_at or 0,
            data=data,
        )

    def list_patch_files(self, repo_id):
        """List cached patch files of one repository ordered by filename.

        Args:
            repo_id: int - Remote repository id

        Returns:
            list - PatchFileEntry objects
        """
        try:
            repo_id = int(repo_id)
        except (TypeError, ValueError):
            return []

        def query(session):
            return (
                session.query(PatchFileRow)
                .filter(PatchFileRow.repo_id == repo_id)
                .order_by(func.lower(PatchFileRow.filename).asc(), PatchFileRow.path.asc())
                .all()
            )

        return [
            PatchFileEntry(
                repo_id=row.repo_id,
                path=row.path,
                filename=row.filename,
                branch=row.branch or 'HEAD',
                sha=row.sha or None,
                size=row.size or 0,
                download_url=row.download_url or None,
                fetched_at=row.fetched_at,
            )
            for row in self._read(f"listing of patch files for repo {repo_id}", query)
        ]

    def get_last_fetched(self, kind=KIND_PLUGIN):
        """Timestamp of the last refresh of a kind, None if never fetched."""
        def query(session):
            return session.query(func.max(RepoRow.fetched_at)).filter(RepoRow.kind == kind).scalar()

        value = self._read(f"last fetch lookup for {kind}", query)
        return int(value) if value is not None else None

    def count_repos(self, kind=KIND_PLUGIN):
        def query(session):
            return session.query(func.count(RepoRow.id)).filter(RepoRow.kind == kind).scalar()

        return self._read(f"count of {kind} repos", query) or 0

    def prune_patch_files(self, keep_repo_ids):
        """Drop the patch listings of repositories outside keep_repo_ids.

        Returns:
            int - Number of rows deleted
        """
        keep = [int(repo_id) for repo_id in keep_repo_ids]

        def prune(session):
            query = session.query(PatchFileRow)
            if keep:
                query = query.filter(PatchFileRow.repo_id.notin_(keep))
            return query.delete(synchronize_session=False)

        return self._write("prune of patch files", prune)

    def clear(self):
        self._write("clear of repos", lambda session: session.query(RepoRow).delete())

    def dispose(self):
        self.engine.dispose()
