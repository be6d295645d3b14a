import threading,logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class Semaphore:
    '''
    Named mutual exclusion for resources identified by a string path.
    At most one holder per resource; other callers wait in acquire() until the
    holder releases it or their timeout expires.
    '''

    def __init__(self):
        self._guard=threading.Lock()
        self._locks:dict[str,threading.Lock]={}
        self._users:dict[str,int]={}

    def acquire(self,resource:str,timeout:float|None=None) -> bool:
        with self._guard:
            lock=self._locks.setdefault(resource,threading.Lock())
            self._users[resource]=self._users.get(resource,0)+1
            logger.debug(f"acquire:{resource} waiting={self._users[resource]-1}")

        acquired=lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            logger.warning(f"acquire:{resource} timed out after {timeout} s")
            self._forget(resource)
        return acquired

    def release(self,resource:str):
        with self._guard:
            lock=self._locks.get(resource)
        if lock is None:
            return
        lock.release()
        self._forget(resource)
        logger.debug(f"release:{resource}")

    def _forget(self,resource:str):
        # drop the entry once nobody holds or waits for it
        with self._guard:
            self._users[resource]-=1
            if self._users[resource]==0:
                del self._users[resource]
                del self._locks[resource]

    @contextmanager
    def hold(self,resource:str,timeout:float|None=None):
        '''Yields True while holding the resource, False if it could not be acquired in time.'''
        acquired=self.acquire(resource,timeout)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(resource)
