"""Catalog reconciliation between the output trees on disk and the catalog store.

A title is an immediate subdirectory of an output root (an enabled volume, or
the default output directory when no volumes are configured). Its episodes are
the immediate subdirectories that hold a manifest. Titles without episodes are
not catalog entries.
"""

import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
from mediavault.config.models import AppConfig
from mediavault.domain.models import CatalogEntry, VideoRef, Volume
from mediavault.infrastructure.database import CatalogStore, StoreError
from mediavault.infrastructure.housekeeping import HousekeepingService
from mediavault.infrastructure.paths import PathMapper, normalize_url_path
from mediavault.infrastructure.storage import StorageAllocator

COVER_NAMES = ("cover.jpg", "cover.png", "cover.jpeg", "cover.webp")

# (hosting volume or None for the default directory, title directory)
Candidate = Tuple[Optional[Volume], Path]


class CatalogReconciler:
    def __init__(
        self,
        config: AppConfig,
        allocator: StorageAllocator,
        store: CatalogStore,
        mapper: PathMapper,
        housekeeping: Optional[HousekeepingService] = None,
    ):
        self.config = config
        self.allocator = allocator
        self.store = store
        self.mapper = mapper
        self.housekeeping = housekeeping or HousekeepingService()
        self.manifest_name = config.paths.manifest_name
        self.logger = logging.getLogger(__name__)

    def _scan_roots(self) -> List[Tuple[Optional[Volume], Path]]:
        if not self.allocator.enabled_volumes():
            return [(None, self.mapper.default_output_root)]
        return [(v, v.root_path) for v in self.allocator.enabled_volumes()]

    def _candidates(self) -> List[Candidate]:
        """Every title directory; a folder name on several volumes keeps the first."""
        seen: Dict[str, Candidate] = {}
        for volume, root in self._scan_roots():
            try:
                entries = sorted((p for p in root.iterdir() if p.is_dir()), key=lambda p: p.name)
            except OSError as e:
                self.logger.warning(f"Cannot read output root {root}: {e}")
                continue
            for title_dir in entries:
                if title_dir.name in seen:
                    self.logger.warning(
                        f"Title {title_dir.name} exists on several volumes; keeping {seen[title_dir.name][1]}"
                    )
                    continue
                seen[title_dir.name] = (volume, title_dir)
        return list(seen.values())

    def _locate(self, folder_name: str) -> Optional[Candidate]:
        for volume, root in self._scan_roots():
            title_dir = root / folder_name
            if title_dir.is_dir():
                return volume, title_dir
        return None

    def _episodes(self, volume: Optional[Volume], title_dir: Path) -> List[VideoRef]:
        try:
            children = [p for p in title_dir.iterdir() if p.is_dir()]
        except OSError as e:
            self.logger.warning(f"Cannot read title directory {title_dir}: {e}")
            return []
        episodes = []
        for episode_dir in children:
            manifest = episode_dir / self.manifest_name
            if not manifest.is_file():
                continue
            episodes.append(VideoRef(
                logical_path=self.mapper.output_ref(volume, title_dir.name, episode_dir.name, self.manifest_name),
                display_name=episode_dir.name,
                physical_path=manifest,
            ))
        episodes.sort(key=lambda ref: ref.display_name)
        return episodes

    def _cover_in(self, volume: Optional[Volume], title_dir: Path) -> Optional[str]:
        for name in COVER_NAMES:
            if (title_dir / name).is_file():
                return self.mapper.output_ref(volume, title_dir.name, name)
        return None

    def _scan_title(self, volume: Optional[Volume], title_dir: Path) -> Optional[CatalogEntry]:
        episodes = self._episodes(volume, title_dir)
        if not episodes:
            return None
        folder = title_dir.name
        entry = CatalogEntry(
            title=folder,
            folder_name=folder,
            summary=self.config.catalog.summary_template.format(title=folder),
            cover_ref=self._cover_in(volume, title_dir) or self.config.paths.default_cover,
            primary_video_ref=episodes[0].logical_path,
            episode_count=len(episodes),
            physical_root_path=str(title_dir),
            hosting_volume=volume.name if volume else None,
        )
        if self.store.available:
            self.store.upsert(entry)
        return entry

    def _scan_candidates(self, candidates: List[Candidate]) -> List[CatalogEntry]:
        results: List[CatalogEntry] = []
        results_lock = threading.Lock()

        def worker(candidate: Candidate) -> None:
            entry = self._scan_title(*candidate)
            if entry is not None:
                with results_lock:
                    results.append(entry)

        if candidates:
            workers = min(self.config.catalog.scan_workers, len(candidates))
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(worker, c) for c in candidates]
                for future in concurrent.futures.as_completed(futures):
                    try:
                        future.result()
                    except Exception as e:
                        self.logger.error(f"Title scan failed: {e}")

        results.sort(key=lambda e: e.title)
        return results

    def scan_all(self) -> List[CatalogEntry]:
        """Full rescan of every output root; upserts each entry when the store is up."""
        candidates = self._candidates()
        self.logger.info(f"SCAN_START: {len(candidates)} candidate titles")
        entries = self._scan_candidates(candidates)
        self.logger.info(f"SCAN_END: {len(entries)} titles with episodes")
        return entries

    def scan_subset(self, folder_names: Iterable[str]) -> List[CatalogEntry]:
        """Rescans only the named title folders."""
        candidates: List[Candidate] = []
        seen = set()
        for folder in folder_names:
            if not folder or folder in seen:
                continue
            seen.add(folder)
            located = self._locate(folder)
            if located is None:
                self.logger.warning(f"Title folder not found on any output root: {folder}")
                continue
            candidates.append(located)
        return self._scan_candidates(candidates)

    def resolve_by_folder(self, folder_name: str) -> Optional[CatalogEntry]:
        if self.store.available:
            try:
                entry = self.store.get(folder_name)
                if entry is not None:
                    return entry
            except StoreError as e:
                self.logger.warning(f"Catalog store read failed, scanning filesystem: {e}")
        entries = self.scan_subset([folder_name])
        return entries[0] if entries else None

    def find_cover(self, folder_name: str) -> str:
        """Cover reference searched in the default output dir, raw dir, then volumes."""
        default_dir = self.mapper.default_output_root / folder_name
        cover = self._cover_in(None, default_dir)
        if cover:
            return cover
        raw_dir = self.mapper.raw_root / folder_name
        for name in COVER_NAMES:
            if (raw_dir / name).is_file():
                return normalize_url_path(f"{self.config.paths.raw_dir}/{folder_name}/{name}")
        for volume in self.allocator.enabled_volumes():
            cover = self._cover_in(volume, volume.root_path / folder_name)
            if cover:
                return cover
        return self.config.paths.default_cover

    def _cover_resolves(self, cover_ref: str) -> bool:
        if not cover_ref or cover_ref == self.config.paths.default_cover:
            return False
        return self.mapper.to_physical(cover_ref).is_file()

    def list_entries_from_store(self) -> List[CatalogEntry]:
        """Store read with filesystem fallback; stale covers are re-resolved and written back."""
        if not self.store.available:
            return self.scan_all()
        try:
            entries = self.store.list_entries()
        except StoreError as e:
            self.logger.warning(f"Catalog store read failed, scanning filesystem: {e}")
            return self.scan_all()

        refreshed = []
        for entry in entries:
            if not self._cover_resolves(entry.cover_ref):
                cover = self.find_cover(entry.folder_name)
                if cover != entry.cover_ref:
                    self.store.update_cover(entry.folder_name, cover)
                    entry = entry.model_copy(update={"cover_ref": cover})
            refreshed.append(entry)
        return refreshed

    def list_videos(self, folder_name: str) -> List[VideoRef]:
        videos: Dict[str, VideoRef] = {}
        for volume, root in self._scan_roots():
            title_dir = root / folder_name
            if not title_dir.is_dir():
                continue
            for ref in self._episodes(volume, title_dir):
                videos.setdefault(ref.logical_path, ref)
        return sorted(videos.values(), key=lambda ref: ref.display_name)

    def search(self, keyword: str) -> List[CatalogEntry]:
        if self.store.available:
            try:
                return self.store.search(keyword)
            except StoreError as e:
                self.logger.warning(f"Catalog search failed, scanning filesystem: {e}")
        needle = keyword.lower()
        return [
            e for e in self.scan_all()
            if needle in e.title.lower() or needle in e.folder_name.lower()
        ]

    def delete_title(self, folder_name: str) -> bool:
        """Removes the raw folder, every output tree and the store row of a title."""
        if not folder_name or "/" in folder_name or "\\" in folder_name or folder_name in (".", ".."):
            raise ValueError(f"Invalid title folder: {folder_name!r}")

        targets = [self.mapper.raw_root / folder_name, self.mapper.default_output_root / folder_name]
        targets.extend(v.root_path / folder_name for v in self.allocator.all_volumes())
        removed = False
        for target in targets:
            if self.housekeeping.remove_tree(target):
                removed = True

        if self.store.available and self.store.delete(folder_name):
            self.logger.info(f"Deleted catalog entry: {folder_name}")
            removed = True
        return removed

    def update_entry(
        self,
        folder_name: str,
        title: Optional[str] = None,
        summary: Optional[str] = None,
        episode_count: Optional[int] = None,
    ) -> bool:
        if not self.store.available:
            self.logger.warning(f"Cannot update {folder_name}: catalog store unavailable")
            return False
        return self.store.update_fields(folder_name, title=title, summary=summary, episode_count=episode_count)
